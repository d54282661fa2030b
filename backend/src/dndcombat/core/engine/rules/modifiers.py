from __future__ import annotations

import logging
from typing import List, Optional, Protocol

from dndcombat.core.engine.characters import proficiency_bonus
from dndcombat.core.engine.conditions.manager import ConditionService
from dndcombat.core.engine.conditions.types import ConditionType, DurationType
from dndcombat.core.engine.entities import CharacterEntity
from dndcombat.core.engine.events import (
    ContextKey,
    EventBus,
    EventType,
    GameEvent,
    Subscription,
)
from dndcombat.core.engine.state import UNARMED_STRIKE

logger = logging.getLogger(__name__)

PROFICIENCY_PRIORITY = 50
SPELL_DAMAGE_PRIORITY = 100

VICIOUS_MOCKERY = "Vicious Mockery"


def _bump(event: GameEvent, key: str, delta: int) -> None:
    v = event.context.get_int(key)
    if v is not None:
        event.context.set(key, v + delta)


class ProficiencyHandler:
    """Adds the proficiency bonus to attack and saving-throw totals."""

    priority = PROFICIENCY_PRIORITY

    def register(self, bus: EventBus) -> List[Subscription]:
        return [
            bus.subscribe(EventType.ON_ATTACK_ROLL, self.priority, self.on_attack_roll),
            bus.subscribe(EventType.ON_SAVING_THROW, self.priority, self.on_saving_throw),
        ]

    def on_attack_roll(self, event: GameEvent) -> None:
        if not isinstance(event.actor, CharacterEntity):
            return
        weapon_name = event.context.get_str(ContextKey.WEAPON)
        # unarmed strikes already carry proficiency
        if not weapon_name or weapon_name == UNARMED_STRIKE:
            return

        ch = event.actor.character
        w = ch.equipped_weapon
        if w is None or w.name != weapon_name or not ch.is_proficient_with(w):
            return

        bonus = proficiency_bonus(ch.level)
        _bump(event, ContextKey.ATTACK_BONUS, bonus)
        _bump(event, ContextKey.TOTAL_ATTACK, bonus)

    def on_saving_throw(self, event: GameEvent) -> None:
        entity = event.actor if event.actor is not None else event.target
        if not isinstance(entity, CharacterEntity):
            return
        save_type = event.context.get_str(ContextKey.SAVE_TYPE)
        if not save_type:
            return

        ch = entity.character
        if not ch.has_save_proficiency(save_type):
            return

        bonus = proficiency_bonus(ch.level)
        _bump(event, ContextKey.SAVE_BONUS, bonus)
        _bump(event, ContextKey.TOTAL_SAVE, bonus)


class DamageApplier(Protocol):
    def apply_damage(
        self,
        encounter_id: str,
        combatant_id: str,
        user_id: str,
        amount: int,
        note: Optional[str] = None,
    ) -> object: ...


class SpellDamageHandler:
    """Routes spell damage published on the bus into the encounter."""

    priority = SPELL_DAMAGE_PRIORITY

    def __init__(
        self, service: DamageApplier, conditions: Optional[ConditionService] = None
    ) -> None:
        self._service = service
        self._conditions = conditions

    def register(self, bus: EventBus) -> List[Subscription]:
        return [bus.subscribe(EventType.ON_SPELL_DAMAGE, self.priority, self.on_spell_damage)]

    def on_spell_damage(self, event: GameEvent) -> None:
        if event.cancelled:
            return
        ctx = event.context
        damage = ctx.get_int(ContextKey.DAMAGE)
        target_id = ctx.get_str(ContextKey.TARGET_ID)
        encounter_id = ctx.get_str(ContextKey.ENCOUNTER_ID)
        if not damage or damage <= 0 or not target_id or not encounter_id:
            return
        user_id = ctx.get_str(ContextKey.USER_ID) or "system"

        self._service.apply_damage(
            encounter_id, target_id, user_id, damage, note=ctx.get_str(ContextKey.LOG_ENTRY)
        )
        ctx.set(ContextKey.DAMAGE_APPLIED, True)

        spell = ctx.get_str(ContextKey.SPELL_NAME)
        if spell == VICIOUS_MOCKERY and self._conditions is not None:
            self._conditions.add_condition(
                target_id,
                ConditionType.DISADVANTAGE_NEXT_ATTACK,
                VICIOUS_MOCKERY,
                DurationType.END_OF_NEXT_TURN,
                1,
                applied_by=user_id,
            )
            logger.debug("vicious mockery: %s has disadvantage on next attack", target_id)


def register_standard_handlers(
    bus: EventBus, service: DamageApplier, conditions: Optional[ConditionService] = None
) -> List[Subscription]:
    subs = ProficiencyHandler().register(bus)
    subs += SpellDamageHandler(service, conditions).register(bus)
    return subs
