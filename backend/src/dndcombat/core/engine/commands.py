from __future__ import annotations

from typing import Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field

from dndcombat.core.engine.conditions.types import ConditionType, DurationType

Ability = Literal["str", "dex", "con", "int", "wis", "cha"]


class CommandBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class DamageDiceIn(CommandBase):
    count: int = Field(default=1, ge=1)
    sides: int = Field(ge=1)
    bonus: int = 0
    damage_type: str = "bludgeoning"


class MonsterActionIn(CommandBase):
    name: str = Field(min_length=1)
    attack_bonus: int = 0
    damage: List[DamageDiceIn] = Field(default_factory=list)
    description: str = ""


class CreateEncounter(CommandBase):
    session_id: str = Field(min_length=1)
    name: str
    created_by: str = Field(min_length=1)
    channel_id: str = ""
    description: str = ""


class AddMonster(CommandBase):
    name: str = Field(min_length=1)
    max_hp: int = Field(ge=1)
    ac: int = Field(default=10, ge=0)
    speed: int = Field(default=30, ge=0)
    initiative_bonus: int = 0
    kind: Literal["monster", "npc"] = "monster"
    monster_ref: str = ""
    abilities: Dict[str, int] = Field(default_factory=dict)
    actions: List[MonsterActionIn] = Field(default_factory=list)


class Attack(CommandBase):
    encounter_id: str
    attacker_id: str
    target_id: str
    user_id: str
    # -1 or out of range -> Unarmed Strike
    action_index: int = 0


class ExecuteAttack(CommandBase):
    encounter_id: str
    user_id: str
    target_id: str
    auto_advance: bool = True


class ApplyCondition(CommandBase):
    encounter_id: str
    combatant_id: str
    user_id: str
    condition_type: ConditionType
    source: str = ""
    duration_type: DurationType = DurationType.PERMANENT
    duration: int = Field(default=0, ge=0)
    save_dc: int = Field(default=0, ge=0)
    save_type: str = ""
    save_end: bool = False


class RollSave(CommandBase):
    encounter_id: str
    combatant_id: str
    ability: Ability
    dc: int = Field(ge=1)


class SpellDamage(CommandBase):
    encounter_id: str
    caster_id: str
    target_id: str
    user_id: str
    spell_name: str = Field(min_length=1)
    dice_count: int = Field(default=1, ge=1)
    dice_sides: int = Field(ge=1)
    bonus: int = 0
    damage_type: str = "force"
