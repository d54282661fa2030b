from __future__ import annotations

import logging
from typing import List, Optional

from dndcombat.core.engine.characters import Character, Resource
from dndcombat.core.engine.conditions.types import ConditionType
from dndcombat.core.engine.dice import RandomRoller, Roller
from dndcombat.core.engine.events import (
    ContextKey,
    EventBus,
    EventType,
    GameEvent,
    Subscription,
    new_event,
)
from dndcombat.core.engine.feats.base import Feat, is_character

logger = logging.getLogger(__name__)

ALERT_INITIATIVE_BONUS = 5
POWER_ATTACK_PENALTY = 5
POWER_ATTACK_DAMAGE = 10
LUCK_POINTS = "luck_points"
LUCKY_MAX_POINTS = 3


class Alert(Feat):
    key = "alert"
    name = "Alert"
    description = "+5 to initiative and you can't be surprised while conscious."

    def register_handlers(self, bus: EventBus, character: Character) -> List[Subscription]:
        def on_initiative(event: GameEvent) -> None:
            if not is_character(event.actor, character):
                return
            init = event.context.get_int(ContextKey.INITIATIVE)
            if init is not None:
                event.context.set(ContextKey.INITIATIVE, init + ALERT_INITIATIVE_BONUS)

        def on_condition(event: GameEvent) -> None:
            if not is_character(event.target, character):
                return
            if event.context.get_str(ContextKey.CONDITION_TYPE) == ConditionType.SURPRISED.value:
                logger.debug("%s is alert and cannot be surprised", character.name)
                event.cancel()

        return [
            bus.subscribe(EventType.ON_INITIATIVE_ROLL, 25, on_initiative),
            bus.subscribe(EventType.ON_CONDITION_APPLIED, 10, on_condition),
        ]


class _PowerAttackFeat(Feat):
    """-5 to hit for +10 damage with a qualifying weapon.

    A crit or a kill with the weapon grants a bonus action, announced on the bus.
    """

    grants_bonus_action = False

    def qualifies(self, character: Character, event: GameEvent) -> bool:
        raise NotImplementedError

    def register_handlers(self, bus: EventBus, character: Character) -> List[Subscription]:
        state = {"active": False}

        def before_attack(event: GameEvent) -> None:
            if not is_character(event.actor, character):
                return
            state["active"] = self.qualifies(character, event)
            if not state["active"]:
                return
            bonus = event.context.get_int(ContextKey.ATTACK_BONUS) or 0
            event.context.set(ContextKey.ATTACK_BONUS, bonus - POWER_ATTACK_PENALTY)

        def on_damage(event: GameEvent) -> None:
            if not is_character(event.actor, character) or not state["active"]:
                return
            state["active"] = False
            dmg = event.context.get_int(ContextKey.DAMAGE) or 0
            event.context.set(ContextKey.DAMAGE, dmg + POWER_ATTACK_DAMAGE)

        def after_damage(event: GameEvent) -> None:
            if not is_character(event.actor, character):
                return
            crit = event.context.get_bool(ContextKey.IS_CRITICAL)
            killed = event.context.get_bool(ContextKey.TARGET_DEFEATED)
            if crit or killed:
                bus.publish(
                    new_event(
                        EventType.BONUS_ACTION_GRANTED,
                        actor=event.actor,
                        target=event.target,
                        **{ContextKey.SOURCE: self.name},
                    )
                )

        subs = [
            bus.subscribe(EventType.BEFORE_ATTACK_ROLL, 30, before_attack),
            bus.subscribe(EventType.ON_DAMAGE_ROLL, 40, on_damage),
        ]
        if self.grants_bonus_action:
            subs.append(bus.subscribe(EventType.AFTER_DAMAGE_ROLL, 60, after_damage))
        return subs


class GreatWeaponMaster(_PowerAttackFeat):
    key = "great_weapon_master"
    name = "Great Weapon Master"
    description = "Heavy melee weapons: -5 to hit for +10 damage; crits and kills grant a bonus attack."
    grants_bonus_action = True

    def qualifies(self, character: Character, event: GameEvent) -> bool:
        w = character.equipped_weapon
        return (
            w is not None
            and w.category == "melee"
            and w.has_property("heavy")
            and event.context.get_str(ContextKey.WEAPON) == w.name
        )


class Sharpshooter(_PowerAttackFeat):
    key = "sharpshooter"
    name = "Sharpshooter"
    description = "Ranged weapons: -5 to hit for +10 damage."

    def qualifies(self, character: Character, event: GameEvent) -> bool:
        return event.context.get_str(ContextKey.WEAPON_TYPE) == "ranged"


class Tough(Feat):
    key = "tough"
    name = "Tough"
    description = "Hit point maximum increases by 2 per level."

    def apply(self, character: Character) -> None:
        extra = 2 * character.level
        character.max_hp += extra
        character.current_hp += extra


class Lucky(Feat):
    """Three luck points per long rest.

    A point buys a second d20 on a missed attack or a failed save; the better
    roll stands. Points live in ``character.resources`` so a long rest
    refills them.
    """

    key = "lucky"
    name = "Lucky"
    description = "3 luck points per long rest to reroll a missed attack or a failed saving throw."

    def __init__(self, roller: Optional[Roller] = None) -> None:
        self._roller = roller or RandomRoller()

    def apply(self, character: Character) -> None:
        character.resources[LUCK_POINTS] = Resource(max=LUCKY_MAX_POINTS, current=LUCKY_MAX_POINTS)

    def _reroll(self, character: Character) -> Optional[int]:
        pool = character.resources.get(LUCK_POINTS)
        if pool is None or pool.current <= 0:
            return None
        pool.current -= 1
        nat = self._roller.roll(1, 20).total
        logger.debug("%s spends a luck point (%d left): d20 %d", character.name, pool.current, nat)
        return nat

    def register_handlers(self, bus: EventBus, character: Character) -> List[Subscription]:
        if LUCK_POINTS not in character.resources:
            self.apply(character)

        def after_attack(event: GameEvent) -> None:
            if not is_character(event.actor, character):
                return
            ctx = event.context
            if ctx.get_bool(ContextKey.HIT) or ctx.get_bool(ContextKey.CRITICAL):
                return
            nat = ctx.get_int(ContextKey.ATTACK_ROLL)
            total = ctx.get_int(ContextKey.TOTAL_ATTACK)
            ac = ctx.get_int(ContextKey.TARGET_AC)
            if nat is None or total is None or ac is None:
                return
            again = self._reroll(character)
            if again is None or again <= nat:
                return
            total += again - nat
            ctx.set(ContextKey.ATTACK_ROLL, again)
            ctx.set(ContextKey.TOTAL_ATTACK, total)
            ctx.set(ContextKey.CRITICAL, again == 20)
            ctx.set(ContextKey.HIT, again == 20 or total >= ac)

        def on_save(event: GameEvent) -> None:
            if not is_character(event.actor, character):
                return
            ctx = event.context
            nat = ctx.get_int(ContextKey.SAVE_ROLL)
            total = ctx.get_int(ContextKey.TOTAL_SAVE)
            dc = ctx.get_int(ContextKey.SAVE_DC)
            if nat is None or total is None or dc is None or total >= dc:
                return
            again = self._reroll(character)
            if again is None or again <= nat:
                return
            ctx.set(ContextKey.SAVE_ROLL, again)
            ctx.set(ContextKey.TOTAL_SAVE, total + again - nat)

        return [
            bus.subscribe(EventType.AFTER_ATTACK_ROLL, 70, after_attack),
            bus.subscribe(EventType.ON_SAVING_THROW, 70, on_save),
        ]
