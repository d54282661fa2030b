from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from dndcombat.core.engine.characters import Character
from dndcombat.core.engine.dice import Roller
from dndcombat.core.engine.events import EventBus, Subscription
from dndcombat.core.engine.feats.base import Feat
from dndcombat.core.engine.feats.combat_feats import (
    Alert,
    GreatWeaponMaster,
    Lucky,
    Sharpshooter,
    Tough,
)

logger = logging.getLogger(__name__)


class FeatRegistry:
    """Catalog of feats; built once and handed to whoever composes the engine."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._feats: Dict[str, Feat] = {}
        self._subs: Dict[str, List[Subscription]] = {}

    def register(self, feat: Feat) -> None:
        if not feat.key:
            raise ValueError("feat key cannot be empty")
        with self._lock:
            if feat.key in self._feats:
                raise ValueError(f"feat {feat.key!r} already registered")
            self._feats[feat.key] = feat

    def get(self, key: str) -> Optional[Feat]:
        with self._lock:
            return self._feats.get(key)

    def list(self) -> List[Feat]:
        with self._lock:
            return sorted(self._feats.values(), key=lambda f: f.name)

    def available_for(self, character: Character) -> List[Feat]:
        return [f for f in self.list() if f.can_take(character)]

    def apply_feat(self, character: Character, key: str) -> Feat:
        feat = self.get(key)
        if feat is None:
            raise ValueError(f"unknown feat {key!r}")
        if not feat.can_take(character):
            raise ValueError(f"{character.name} cannot take {feat.name}")
        feat.apply(character)
        character.feats.append(feat.key)
        return feat

    def register_handlers(self, character: Character, bus: EventBus) -> List[Subscription]:
        """Subscribe the character's feats, replacing any earlier subscriptions."""
        self.unregister_handlers(character.id, bus)

        subs: List[Subscription] = []
        for key in character.feats:
            feat = self.get(key)
            if feat is None:
                logger.warning("character %s has unknown feat %r", character.id, key)
                continue
            subs.extend(feat.register_handlers(bus, character))

        with self._lock:
            self._subs[character.id] = subs
        return subs

    def unregister_handlers(self, character_id: str, bus: EventBus) -> None:
        with self._lock:
            old = self._subs.pop(character_id, [])
        for sub in old:
            bus.unsubscribe(sub)


def default_feat_registry(roller: Optional[Roller] = None) -> FeatRegistry:
    """Registry with every shipped feat; ``roller`` feeds Lucky's extra d20."""
    reg = FeatRegistry()
    for feat in (Alert(), GreatWeaponMaster(), Lucky(roller), Sharpshooter(), Tough()):
        reg.register(feat)
    return reg
