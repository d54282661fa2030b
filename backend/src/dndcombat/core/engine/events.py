from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, Iterator, List, Optional, Union

if TYPE_CHECKING:
    from dndcombat.core.engine.entities import Entity

logger = logging.getLogger(__name__)

ContextValue = Union[bool, int, str]


class EventType:
    BEFORE_ATTACK_ROLL = "before_attack_roll"
    ON_ATTACK_ROLL = "on_attack_roll"
    AFTER_ATTACK_ROLL = "after_attack_roll"
    ON_DAMAGE_ROLL = "on_damage_roll"
    AFTER_DAMAGE_ROLL = "after_damage_roll"
    BEFORE_TAKE_DAMAGE = "before_take_damage"
    ON_SAVING_THROW = "on_saving_throw"
    ON_INITIATIVE_ROLL = "on_initiative_roll"
    ON_SPELL_DAMAGE = "on_spell_damage"
    ON_TURN_START = "on_turn_start"
    ON_TURN_END = "on_turn_end"
    ON_CONDITION_APPLIED = "on_condition_applied"
    ON_CONDITION_REMOVED = "on_condition_removed"
    ON_CONDITION_MODIFIED = "on_condition_modified"
    ON_CONCENTRATION_CHECK = "on_concentration_check"
    BONUS_ACTION_GRANTED = "bonus_action_granted"
    ON_COMBAT_END = "on_combat_end"


class ContextKey:
    # attack pipeline
    ATTACK_TYPE = "attack_type"
    WEAPON = "weapon"
    WEAPON_KEY = "weapon_key"
    WEAPON_TYPE = "weapon_type"
    ATTACK_BONUS = "attack_bonus"
    ATTACK_ROLL = "attack_roll"
    TOTAL_ATTACK = "total_attack"
    TARGET_AC = "target_ac"
    HIT = "hit"
    CRITICAL = "critical"
    HAS_ADVANTAGE = "has_advantage"
    HAS_DISADVANTAGE = "has_disadvantage"

    # damage
    DAMAGE = "damage"
    DAMAGE_TYPE = "damage_type"
    IS_CRITICAL = "is_critical"
    TARGET_ID = "target_id"
    TARGET_DEFEATED = "target_defeated"
    SPELL_NAME = "spell_name"
    DAMAGE_APPLIED = "damage_applied"
    LOG_ENTRY = "log_entry"

    # saves and initiative
    SAVE_TYPE = "save_type"
    SAVE_ROLL = "save_roll"
    SAVE_BONUS = "save_bonus"
    TOTAL_SAVE = "total_save"
    SAVE_DC = "save_dc"
    INITIATIVE = "initiative"

    # turn bookkeeping
    TURN_COUNT = "turn_count"
    ROUND = "round"
    NUM_COMBATANTS = "num_combatants"
    ENCOUNTER_ID = "encounter_id"
    USER_ID = "user_id"

    # conditions
    ENTITY_ID = "entity_id"
    CONDITION_ID = "condition_id"
    CONDITION_TYPE = "condition_type"
    SOURCE = "source"
    DC = "dc"


class EventContext:
    """String-keyed bag restricted to int, str and bool values.

    Getters fail closed: a missing key or a value of the wrong type reads as
    ``None`` instead of raising.
    """

    def __init__(self, values: Optional[Dict[str, ContextValue]] = None) -> None:
        self._values: Dict[str, ContextValue] = {}
        for k, v in (values or {}).items():
            self.set(k, v)

    def set(self, key: str, value: ContextValue) -> None:
        if not isinstance(value, (bool, int, str)):
            raise TypeError(
                f"context value for {key!r} must be int, str or bool, got {type(value).__name__}"
            )
        self._values[key] = value

    def get(self, key: str) -> Optional[ContextValue]:
        return self._values.get(key)

    def get_int(self, key: str) -> Optional[int]:
        v = self._values.get(key)
        # bool is an int subclass; True must not read as 1
        if isinstance(v, bool) or not isinstance(v, int):
            return None
        return v

    def get_str(self, key: str) -> Optional[str]:
        v = self._values.get(key)
        return v if isinstance(v, str) else None

    def get_bool(self, key: str) -> Optional[bool]:
        v = self._values.get(key)
        return v if isinstance(v, bool) else None

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def as_dict(self) -> Dict[str, ContextValue]:
        return dict(self._values)


@dataclass
class GameEvent:
    type: str
    actor: Optional["Entity"] = None
    target: Optional["Entity"] = None
    context: EventContext = field(default_factory=EventContext)
    _cancelled: bool = field(default=False, repr=False)

    def with_context(self, key: str, value: ContextValue) -> "GameEvent":
        self.context.set(key, value)
        return self

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def is_cancelled(self) -> bool:
        return self._cancelled


def new_event(
    event_type: str,
    actor: Optional["Entity"] = None,
    target: Optional["Entity"] = None,
    **context: ContextValue,
) -> GameEvent:
    return GameEvent(type=event_type, actor=actor, target=target, context=EventContext(context))


Handler = Callable[[GameEvent], None]


@dataclass(frozen=True)
class Subscription:
    id: int
    event_type: str
    priority: int


@dataclass(frozen=True)
class _Entry:
    subscription: Subscription
    handler: Handler


class EventBus:
    """Synchronous priority-ordered publish/subscribe.

    Lower priority numbers run first; equal priorities run in subscription
    order. Every handler runs even after one of them cancels the event, the
    publisher decides what a cancellation means.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        self._handlers: Dict[str, List[_Entry]] = {}

    def subscribe(self, event_type: str, priority: int, handler: Handler) -> Subscription:
        with self._lock:
            sub = Subscription(id=next(self._seq), event_type=event_type, priority=priority)
            entries = self._handlers.setdefault(event_type, [])
            entries.append(_Entry(sub, handler))
            entries.sort(key=lambda e: (e.subscription.priority, e.subscription.id))
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            entries = self._handlers.get(subscription.event_type, [])
            for i, e in enumerate(entries):
                if e.subscription.id == subscription.id:
                    del entries[i]
                    return True
        return False

    def handler_count(self, event_type: str) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, []))

    def publish(self, event: GameEvent) -> GameEvent:
        with self._lock:
            entries = list(self._handlers.get(event.type, []))

        for e in entries:
            e.handler(event)

        if event.cancelled:
            logger.debug("event %s cancelled by a handler", event.type)
        return event
