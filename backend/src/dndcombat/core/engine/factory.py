from __future__ import annotations

import logging
from typing import Callable, Optional

from dndcombat.config import Settings, get_settings
from dndcombat.core.adapters.memory import InMemoryEncounterRepository
from dndcombat.core.engine.conditions.manager import ConditionService
from dndcombat.core.engine.dice import RandomRoller, Roller
from dndcombat.core.engine.events import EventBus
from dndcombat.core.engine.feats.registry import FeatRegistry, default_feat_registry
from dndcombat.core.engine.rules.modifiers import register_standard_handlers
from dndcombat.core.engine.service import EncounterService
from dndcombat.core.ports import CharacterProvider, EncounterRepository, SessionProvider

logger = logging.getLogger(__name__)


def _repository_for(settings: Settings) -> EncounterRepository:
    if settings.repository_backend == "sql":
        from dndcombat.core.persistence.sql_repository import SqlEncounterRepository
        from dndcombat.db.session import SessionLocal

        return SqlEncounterRepository(SessionLocal)
    return InMemoryEncounterRepository()


def build_service(
    characters: CharacterProvider,
    sessions: SessionProvider,
    *,
    settings: Optional[Settings] = None,
    repository: Optional[EncounterRepository] = None,
    roller: Optional[Roller] = None,
    feats: Optional[FeatRegistry] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> EncounterService:
    """Wire bus, conditions, feats and the standard handlers around one service."""
    settings = settings or get_settings()
    bus = EventBus()
    conditions = ConditionService(bus)
    roller = roller or RandomRoller(settings.dice_seed)

    service = EncounterService(
        repository or _repository_for(settings),
        characters,
        sessions,
        roller=roller,
        bus=bus,
        conditions=conditions,
        feats=feats if feats is not None else default_feat_registry(roller),
        dungeon_session_type=settings.dungeon_session_type,
        id_factory=id_factory,
    )
    register_standard_handlers(bus, service, conditions)
    logger.info("combat engine ready (repository=%s)", type(service.repository).__name__)
    return service
