from __future__ import annotations

import copy
import threading
from typing import Dict, List, Optional

from dndcombat.core.engine.characters import Character
from dndcombat.core.engine.state import Encounter
from dndcombat.core.errors import RecordExists, RecordNotFound, VersionConflict
from dndcombat.core.ports import SessionInfo


class InMemoryEncounterRepository:
    """Process-local encounter store; every call copies in and out under one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, Encounter] = {}

    def create(self, encounter: Encounter) -> None:
        with self._lock:
            if encounter.id in self._items:
                raise RecordExists(f"encounter {encounter.id} already exists")
            encounter.version = 1
            self._items[encounter.id] = copy.deepcopy(encounter)

    def get(self, encounter_id: str) -> Encounter:
        with self._lock:
            enc = self._items.get(encounter_id)
            if enc is None:
                raise RecordNotFound(f"encounter {encounter_id} not found")
            return copy.deepcopy(enc)

    def update(self, encounter: Encounter) -> None:
        with self._lock:
            stored = self._items.get(encounter.id)
            if stored is None:
                raise RecordNotFound(f"encounter {encounter.id} not found")
            if stored.version != encounter.version:
                raise VersionConflict(
                    f"encounter {encounter.id} was modified concurrently "
                    f"(have v{encounter.version}, stored v{stored.version})"
                )
            encounter.version += 1
            self._items[encounter.id] = copy.deepcopy(encounter)

    def delete(self, encounter_id: str) -> None:
        with self._lock:
            if self._items.pop(encounter_id, None) is None:
                raise RecordNotFound(f"encounter {encounter_id} not found")

    def get_by_session(self, session_id: str) -> List[Encounter]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._items.values() if e.session_id == session_id]

    def get_active_by_session(self, session_id: str) -> Optional[Encounter]:
        with self._lock:
            for e in self._items.values():
                if e.session_id == session_id and e.status != "completed":
                    return copy.deepcopy(e)
        return None

    def get_by_message(self, message_id: str) -> Optional[Encounter]:
        if not message_id:
            return None
        with self._lock:
            for e in self._items.values():
                if e.message_id == message_id:
                    return copy.deepcopy(e)
        return None


class InMemoryCharacterProvider:
    def __init__(self, characters: Optional[List[Character]] = None) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, Character] = {}
        for ch in characters or []:
            self._items[ch.id] = ch.model_copy(deep=True)

    def get_by_id(self, character_id: str) -> Character:
        with self._lock:
            ch = self._items.get(character_id)
            if ch is None:
                raise RecordNotFound(f"character {character_id} not found")
            return ch.model_copy(deep=True)

    def save(self, character: Character) -> None:
        with self._lock:
            self._items[character.id] = character.model_copy(deep=True)


class InMemorySessionProvider:
    def __init__(self, sessions: Optional[List[SessionInfo]] = None) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, SessionInfo] = {s.id: s for s in sessions or []}

    def put(self, session: SessionInfo) -> None:
        with self._lock:
            self._items[session.id] = session

    def get_session(self, session_id: str) -> SessionInfo:
        with self._lock:
            s = self._items.get(session_id)
            if s is None:
                raise RecordNotFound(f"session {session_id} not found")
            return s.model_copy(deep=True)
