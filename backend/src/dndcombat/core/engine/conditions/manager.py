from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import TYPE_CHECKING, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from dndcombat.core.engine.conditions.types import (
    Condition,
    ConditionType,
    DurationType,
    Effect,
    describe,
    display_name,
    standard_effect,
)
from dndcombat.core.engine.events import ContextKey, EventBus, EventType, new_event

if TYPE_CHECKING:
    from dndcombat.core.engine.entities import Entity

logger = logging.getLogger(__name__)


class ConditionManager:
    """Conditions held by a single entity, in application order."""

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        self._conditions: Dict[str, Condition] = {}

    def add(self, condition: Condition) -> None:
        self._conditions[condition.id] = condition

    def get(self, condition_id: str) -> Optional[Condition]:
        return self._conditions.get(condition_id)

    def all(self) -> List[Condition]:
        return list(self._conditions.values())

    def has(self, condition_type: ConditionType) -> bool:
        return any(c.type == condition_type for c in self._conditions.values())

    def remove(self, condition_id: str) -> Optional[Condition]:
        return self._conditions.pop(condition_id, None)

    def remove_where(self, pred: Callable[[Condition], bool]) -> List[Condition]:
        doomed = [c for c in self._conditions.values() if pred(c)]
        for c in doomed:
            del self._conditions[c.id]
        return doomed

    def tick(self, duration_type: DurationType) -> List[Condition]:
        """Decrement conditions of one cadence; returns the ones that ran out."""
        expired: List[Condition] = []
        for c in list(self._conditions.values()):
            if c.duration_type != duration_type:
                continue
            c.remaining -= 1
            if c.remaining <= 0:
                del self._conditions[c.id]
                expired.append(c)
        return expired

    def active_effects(self) -> Effect:
        out = Effect()
        for c in self._conditions.values():
            out.merge(standard_effect(c.type))
        return out


class ConditionService:
    """Entity id -> ConditionManager, created lazily, with bus notifications."""

    def __init__(self, bus: Optional[EventBus] = None) -> None:
        self._bus = bus
        self._lock = threading.RLock()
        self._managers: Dict[str, ConditionManager] = {}

    def manager(self, entity_id: str) -> ConditionManager:
        with self._lock:
            mgr = self._managers.get(entity_id)
            if mgr is None:
                mgr = ConditionManager(entity_id)
                self._managers[entity_id] = mgr
            return mgr

    # --- add / remove ---

    def add_condition(
        self,
        entity_id: str,
        condition_type: ConditionType,
        source: str = "",
        duration_type: DurationType = DurationType.PERMANENT,
        duration: int = 0,
        *,
        source_id: str = "",
        applied_by: str = "",
        save_dc: int = 0,
        save_type: str = "",
        save_end: bool = False,
        level: Optional[int] = None,
        metadata: Optional[dict] = None,
        target: Optional["Entity"] = None,
    ) -> Optional[Condition]:
        """Attach a condition. Duplicates of a type are allowed.

        Listeners on ``on_condition_applied`` may cancel the event, in which
        case nothing is stored and ``None`` is returned.
        """
        condition_type = ConditionType(condition_type)
        duration_type = DurationType(duration_type)
        if level is None:
            level = 1 if condition_type == ConditionType.EXHAUSTION else 0

        cond = Condition(
            id=str(uuid4()),
            type=condition_type,
            name=display_name(condition_type),
            description=describe(condition_type),
            source=source,
            source_id=source_id,
            duration_type=duration_type,
            duration=duration,
            remaining=duration,
            level=level,
            save_dc=save_dc,
            save_type=save_type.upper(),
            save_end=save_end,
            applied_by=applied_by,
            metadata=dict(metadata or {}),
        )

        ev = self._publish(EventType.ON_CONDITION_APPLIED, entity_id, cond, target)
        if ev is not None and ev.cancelled:
            logger.debug("condition %s on %s vetoed", condition_type.value, entity_id)
            return None

        if duration_type == DurationType.INSTANT:
            self._publish(EventType.ON_CONDITION_REMOVED, entity_id, cond, target)
            return cond

        with self._lock:
            self.manager(entity_id).add(cond)
        return cond

    def remove_condition(self, entity_id: str, condition_id: str) -> bool:
        with self._lock:
            removed = self.manager(entity_id).remove(condition_id)
        if removed is None:
            return False
        self._publish(EventType.ON_CONDITION_REMOVED, entity_id, removed)
        return True

    def remove_condition_by_type(self, entity_id: str, condition_type: ConditionType) -> int:
        condition_type = ConditionType(condition_type)
        with self._lock:
            removed = self.manager(entity_id).remove_where(lambda c: c.type == condition_type)
        self._announce_removed(entity_id, removed)
        return len(removed)

    def clear(self, entity_id: str) -> int:
        with self._lock:
            removed = self.manager(entity_id).remove_where(lambda c: True)
        self._announce_removed(entity_id, removed)
        return len(removed)

    # --- queries ---

    def get_conditions(self, entity_id: str) -> List[Condition]:
        with self._lock:
            return [replace(c) for c in self.manager(entity_id).all()]

    def get_condition(self, entity_id: str, condition_id: str) -> Optional[Condition]:
        with self._lock:
            c = self.manager(entity_id).get(condition_id)
            return replace(c) if c is not None else None

    def has_condition(self, entity_id: str, condition_type: ConditionType) -> bool:
        with self._lock:
            return self.manager(entity_id).has(ConditionType(condition_type))

    def get_active_effects(self, entity_id: str) -> Effect:
        with self._lock:
            return self.manager(entity_id).active_effects()

    def set_level(self, entity_id: str, condition_id: str, level: int) -> Optional[Condition]:
        with self._lock:
            c = self.manager(entity_id).get(condition_id)
            if c is None:
                return None
            c.level = max(0, level)
        self._publish(EventType.ON_CONDITION_MODIFIED, entity_id, c)
        return c

    # --- timing ---

    def process_turn_start(self, entity_id: str) -> List[Condition]:
        with self._lock:
            expired = self.manager(entity_id).tick(DurationType.TURNS)
        self._announce_removed(entity_id, expired)
        return expired

    def process_turn_end(
        self, entity_id: str, save_results: Optional[Mapping[str, bool]] = None
    ) -> List[Condition]:
        """End-of-turn bookkeeping.

        ``save_results`` maps a save ability (``"WIS"``) to whether the holder
        passed it this turn; passed save-to-end conditions are removed.
        """
        passed = {k.upper() for k, ok in (save_results or {}).items() if ok}

        def _ends(c: Condition) -> bool:
            if c.duration_type == DurationType.END_OF_NEXT_TURN:
                return True
            return c.save_end and c.save_dc > 0 and c.save_type.upper() in passed

        with self._lock:
            removed = self.manager(entity_id).remove_where(_ends)
        self._announce_removed(entity_id, removed)
        return removed

    def process_round_end(self, entity_id: str) -> List[Condition]:
        with self._lock:
            expired = self.manager(entity_id).tick(DurationType.ROUNDS)
        self._announce_removed(entity_id, expired)
        return expired

    def process_damage(self, entity_id: str, amount: int) -> List[Condition]:
        if amount <= 0:
            return []
        with self._lock:
            mgr = self.manager(entity_id)
            concentrating = [c for c in mgr.all() if c.type == ConditionType.CONCENTRATION]
            removed = mgr.remove_where(lambda c: c.duration_type == DurationType.UNTIL_DAMAGED)
        self._announce_removed(entity_id, removed)

        if self._bus is not None:
            for c in concentrating:
                self._bus.publish(
                    new_event(
                        EventType.ON_CONCENTRATION_CHECK,
                        **{
                            ContextKey.ENTITY_ID: entity_id,
                            ContextKey.CONDITION_ID: c.id,
                            ContextKey.DAMAGE: amount,
                            ContextKey.DC: max(10, amount // 2),
                        },
                    )
                )
        return removed

    def process_rest(self, entity_id: str, long_rest: bool = False) -> List[Condition]:
        kinds = {DurationType.UNTIL_REST}
        if long_rest:
            kinds.add(DurationType.UNTIL_LONG_REST)
        with self._lock:
            removed = self.manager(entity_id).remove_where(lambda c: c.duration_type in kinds)
        self._announce_removed(entity_id, removed)
        return removed

    def break_concentration(self, entity_id: str) -> List[Condition]:
        with self._lock:
            removed = self.manager(entity_id).remove_where(
                lambda c: c.duration_type == DurationType.CONCENTRATION
                or c.type == ConditionType.CONCENTRATION
            )
        self._announce_removed(entity_id, removed)
        return removed

    # --- events ---

    def _announce_removed(self, entity_id: str, removed: List[Condition]) -> None:
        for c in removed:
            self._publish(EventType.ON_CONDITION_REMOVED, entity_id, c)

    def _publish(
        self,
        event_type: str,
        entity_id: str,
        cond: Condition,
        target: Optional["Entity"] = None,
    ):
        if self._bus is None:
            return None
        ev = new_event(
            event_type,
            target=target,
            **{
                ContextKey.ENTITY_ID: entity_id,
                ContextKey.CONDITION_ID: cond.id,
                ContextKey.CONDITION_TYPE: cond.type.value,
                ContextKey.SOURCE: cond.source,
            },
        )
        return self._bus.publish(ev)
