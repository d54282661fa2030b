from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class AttackResult(BaseModel):
    attacker_id: str
    attacker_name: str
    target_id: str
    target_name: str
    weapon_name: str

    attack_roll: int = 0
    attack_bonus: int = 0
    total_attack: int = 0
    target_ac: int = 0
    adv_state: Literal["normal", "advantage", "disadvantage"] = "normal"

    hit: bool = False
    critical: bool = False
    cancelled: bool = False

    damage: int = 0
    damage_rolls: List[int] = Field(default_factory=list)
    damage_bonus: int = 0
    damage_dice: str = ""
    damage_type: str = ""
    damage_modifier: Optional[str] = None  # immune | resistant | vulnerable

    target_defeated: bool = False
    target_new_hp: int = 0
    combat_ended: bool = False
    players_won: bool = False

    log_entry: str = ""


class ExecuteAttackResult(BaseModel):
    player_attack: AttackResult
    monster_attacks: List[AttackResult] = Field(default_factory=list)
    current_combatant_id: Optional[str] = None
    current_combatant_name: Optional[str] = None
    is_player_turn: bool = False
    combat_ended: bool = False
    players_won: bool = False


class SavingThrowResult(BaseModel):
    combatant_id: str
    ability: str
    dc: int
    roll: int = 0
    dice: List[int] = Field(default_factory=list)
    bonus: int = 0
    total: int = 0
    adv_state: Literal["normal", "advantage", "disadvantage"] = "normal"
    auto_failed: bool = False
    success: bool = False


class SpellDamageResult(BaseModel):
    spell_name: str
    caster_id: str
    target_id: str
    damage: int
    rolls: List[int] = Field(default_factory=list)
    damage_type: str = ""
    cancelled: bool = False
    target_new_hp: Optional[int] = None
