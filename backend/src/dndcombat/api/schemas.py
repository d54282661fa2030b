from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from dndcombat.core.engine.commands import Ability, AddMonster
from dndcombat.core.engine.conditions.types import ConditionType, DurationType
from dndcombat.core.engine.state import Encounter
from dndcombat.core.persistence.state_codec import encounter_to_dict


class RequestBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class UserRequest(RequestBase):
    user_id: str = Field(min_length=1)


class EncounterCreate(UserRequest):
    session_id: str = Field(min_length=1)
    name: str
    channel_id: str = ""
    description: str = ""


class AddPlayerRequest(UserRequest):
    character_id: str = Field(min_length=1)


class AddMonsterRequest(UserRequest):
    monster: AddMonster


class AttackRequest(UserRequest):
    attacker_id: str
    target_id: str
    action_index: int = 0


class ExecuteAttackRequest(UserRequest):
    target_id: str
    auto_advance: bool = True


class AmountRequest(UserRequest):
    amount: int = Field(ge=0)


class ConditionRequest(UserRequest):
    condition_type: ConditionType
    source: str = ""
    duration_type: DurationType = DurationType.PERMANENT
    duration: int = Field(default=0, ge=0)
    save_dc: int = Field(default=0, ge=0)
    save_type: str = ""
    save_end: bool = False


class SaveRequest(RequestBase):
    ability: Ability
    dc: int = Field(ge=1)


class SpellDamageRequest(UserRequest):
    caster_id: str
    target_id: str
    spell_name: str = Field(min_length=1)
    dice_count: int = Field(default=1, ge=1)
    dice_sides: int = Field(ge=1)
    bonus: int = 0
    damage_type: str = "force"


class LogRequest(RequestBase):
    text: str = Field(min_length=1)


class MessageRequest(RequestBase):
    message_id: str
    channel_id: str = ""


class EncounterStateResponse(BaseModel):
    encounter_id: str
    status: str
    round: int
    current_combatant_id: Optional[str] = None
    state: Dict[str, Any]

    @classmethod
    def from_encounter(cls, enc: Encounter) -> "EncounterStateResponse":
        cur = enc.current_combatant()
        return cls(
            encounter_id=enc.id,
            status=enc.status,
            round=enc.round,
            current_combatant_id=cur.id if cur else None,
            state=encounter_to_dict(enc),
        )


class DamageResponse(BaseModel):
    damage: int
    hp_after: int
    defeated: bool
    combat_ended: bool
    players_won: bool
