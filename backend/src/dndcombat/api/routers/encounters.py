from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from dndcombat.api.deps import get_service
from dndcombat.api.schemas import (
    AddMonsterRequest,
    AddPlayerRequest,
    AmountRequest,
    AttackRequest,
    ConditionRequest,
    DamageResponse,
    EncounterCreate,
    EncounterStateResponse,
    ExecuteAttackRequest,
    LogRequest,
    MessageRequest,
    SaveRequest,
    SpellDamageRequest,
    UserRequest,
)
from dndcombat.core.engine.commands import (
    ApplyCondition,
    Attack,
    CreateEncounter,
    ExecuteAttack,
    RollSave,
    SpellDamage,
)
from dndcombat.core.engine.conditions.types import ConditionType
from dndcombat.core.engine.results import (
    AttackResult,
    ExecuteAttackResult,
    SavingThrowResult,
    SpellDamageResult,
)
from dndcombat.core.engine.service import EncounterService
from dndcombat.core.persistence.state_codec import combatant_to_dict

router = APIRouter(prefix="/encounters", tags=["encounters"])


def _state(enc) -> EncounterStateResponse:
    return EncounterStateResponse.from_encounter(enc)


@router.post("", response_model=EncounterStateResponse, status_code=201)
def create_encounter(payload: EncounterCreate, svc: EncounterService = Depends(get_service)):
    enc = svc.create_encounter(
        CreateEncounter(
            session_id=payload.session_id,
            name=payload.name,
            created_by=payload.user_id,
            channel_id=payload.channel_id,
            description=payload.description,
        )
    )
    return _state(enc)


@router.get("/by-session/{session_id}", response_model=Optional[EncounterStateResponse])
def get_active_encounter(session_id: str, svc: EncounterService = Depends(get_service)):
    enc = svc.get_active_encounter(session_id)
    return _state(enc) if enc else None


@router.get("/by-message/{message_id}", response_model=EncounterStateResponse)
def get_by_message(message_id: str, svc: EncounterService = Depends(get_service)):
    enc = svc.get_by_message(message_id)
    if enc is None:
        raise HTTPException(status_code=404, detail="Encounter not found")
    return _state(enc)


@router.get("/{encounter_id}", response_model=EncounterStateResponse)
def get_encounter(encounter_id: str, svc: EncounterService = Depends(get_service)):
    return _state(svc.get_encounter(encounter_id))


@router.post("/{encounter_id}/monsters", status_code=201)
def add_monster(
    encounter_id: str, payload: AddMonsterRequest, svc: EncounterService = Depends(get_service)
) -> Dict[str, Any]:
    return combatant_to_dict(svc.add_monster(encounter_id, payload.user_id, payload.monster))


@router.post("/{encounter_id}/players", status_code=201)
def add_player(
    encounter_id: str, payload: AddPlayerRequest, svc: EncounterService = Depends(get_service)
) -> Dict[str, Any]:
    return combatant_to_dict(svc.add_player(encounter_id, payload.user_id, payload.character_id))


@router.delete("/{encounter_id}/combatants/{combatant_id}", status_code=204)
def remove_combatant(
    encounter_id: str,
    combatant_id: str,
    user_id: str,
    svc: EncounterService = Depends(get_service),
) -> None:
    svc.remove_combatant(encounter_id, combatant_id, user_id)


@router.post("/{encounter_id}/initiative", response_model=EncounterStateResponse)
def roll_initiative(
    encounter_id: str, payload: UserRequest, svc: EncounterService = Depends(get_service)
):
    return _state(svc.roll_initiative(encounter_id, payload.user_id))


@router.post("/{encounter_id}/start", response_model=EncounterStateResponse)
def start_encounter(
    encounter_id: str, payload: UserRequest, svc: EncounterService = Depends(get_service)
):
    return _state(svc.start_encounter(encounter_id, payload.user_id))


@router.post("/{encounter_id}/next-turn", response_model=EncounterStateResponse)
def next_turn(encounter_id: str, payload: UserRequest, svc: EncounterService = Depends(get_service)):
    return _state(svc.next_turn(encounter_id, payload.user_id))


@router.post("/{encounter_id}/end", response_model=EncounterStateResponse)
def end_encounter(
    encounter_id: str, payload: UserRequest, svc: EncounterService = Depends(get_service)
):
    return _state(svc.end_encounter(encounter_id, payload.user_id))


@router.post("/{encounter_id}/attacks", response_model=AttackResult)
def perform_attack(
    encounter_id: str, payload: AttackRequest, svc: EncounterService = Depends(get_service)
):
    return svc.perform_attack(
        Attack(
            encounter_id=encounter_id,
            attacker_id=payload.attacker_id,
            target_id=payload.target_id,
            user_id=payload.user_id,
            action_index=payload.action_index,
        )
    )


@router.post("/{encounter_id}/execute-attack", response_model=ExecuteAttackResult)
def execute_attack(
    encounter_id: str, payload: ExecuteAttackRequest, svc: EncounterService = Depends(get_service)
):
    return svc.execute_attack_with_target(
        ExecuteAttack(
            encounter_id=encounter_id,
            user_id=payload.user_id,
            target_id=payload.target_id,
            auto_advance=payload.auto_advance,
        )
    )


@router.post("/{encounter_id}/monster-turns", response_model=List[AttackResult])
def process_monster_turns(encounter_id: str, svc: EncounterService = Depends(get_service)):
    return svc.process_all_monster_turns(encounter_id)


@router.post("/{encounter_id}/combatants/{combatant_id}/damage", response_model=DamageResponse)
def apply_damage(
    encounter_id: str,
    combatant_id: str,
    payload: AmountRequest,
    svc: EncounterService = Depends(get_service),
):
    out = svc.apply_damage(encounter_id, combatant_id, payload.user_id, payload.amount)
    return DamageResponse(
        damage=out.damage,
        hp_after=out.hp_after,
        defeated=out.defeated,
        combat_ended=out.combat_ended,
        players_won=out.players_won,
    )


@router.post("/{encounter_id}/combatants/{combatant_id}/heal")
def heal_combatant(
    encounter_id: str,
    combatant_id: str,
    payload: AmountRequest,
    svc: EncounterService = Depends(get_service),
) -> Dict[str, int]:
    return {"healed": svc.heal_combatant(encounter_id, combatant_id, payload.user_id, payload.amount)}


@router.post("/{encounter_id}/combatants/{combatant_id}/conditions")
def apply_condition(
    encounter_id: str,
    combatant_id: str,
    payload: ConditionRequest,
    svc: EncounterService = Depends(get_service),
) -> Dict[str, Any]:
    cond = svc.apply_condition(
        ApplyCondition(
            encounter_id=encounter_id,
            combatant_id=combatant_id,
            **payload.model_dump(),
        )
    )
    if cond is None:
        return {"applied": False}
    return {"applied": True, "condition_id": cond.id, "name": cond.name}


@router.get("/{encounter_id}/combatants/{combatant_id}/conditions")
def list_conditions(
    encounter_id: str, combatant_id: str, svc: EncounterService = Depends(get_service)
) -> List[Dict[str, Any]]:
    svc.get_encounter(encounter_id)
    return [
        {
            "id": c.id,
            "type": c.type.value,
            "name": c.name,
            "duration_type": c.duration_type.value,
            "remaining": c.remaining,
            "source": c.source,
        }
        for c in svc.conditions.get_conditions(combatant_id)
    ]


@router.post("/{encounter_id}/combatants/{combatant_id}/saves", response_model=SavingThrowResult)
def roll_saving_throw(
    encounter_id: str,
    combatant_id: str,
    payload: SaveRequest,
    svc: EncounterService = Depends(get_service),
):
    return svc.roll_saving_throw(
        RollSave(
            encounter_id=encounter_id,
            combatant_id=combatant_id,
            ability=payload.ability,
            dc=payload.dc,
        )
    )


@router.post("/{encounter_id}/spells/damage", response_model=SpellDamageResult)
def resolve_spell_damage(
    encounter_id: str, payload: SpellDamageRequest, svc: EncounterService = Depends(get_service)
):
    return svc.resolve_spell_damage(SpellDamage(encounter_id=encounter_id, **payload.model_dump()))


@router.post("/{encounter_id}/log", status_code=204)
def log_combat_action(
    encounter_id: str, payload: LogRequest, svc: EncounterService = Depends(get_service)
) -> None:
    svc.log_combat_action(encounter_id, payload.text)


@router.put("/{encounter_id}/message", status_code=204)
def update_message_id(
    encounter_id: str, payload: MessageRequest, svc: EncounterService = Depends(get_service)
) -> None:
    svc.update_message_id(encounter_id, payload.message_id, payload.channel_id)


@router.delete("/{encounter_id}/combatants/{combatant_id}/conditions/{condition_type}")
def remove_condition(
    encounter_id: str,
    combatant_id: str,
    condition_type: ConditionType,
    user_id: str,
    svc: EncounterService = Depends(get_service),
) -> Dict[str, int]:
    return {"removed": svc.remove_condition(encounter_id, combatant_id, user_id, condition_type)}
