from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, Field

from dndcombat.core.engine.characters import Character
from dndcombat.core.engine.state import Encounter
from dndcombat.core.errors import RecordExists, RecordNotFound, VersionConflict

__all__ = [
    "CharacterProvider",
    "EncounterRepository",
    "RecordExists",
    "RecordNotFound",
    "SessionInfo",
    "SessionMember",
    "SessionProvider",
    "VersionConflict",
]

SessionRole = Literal["dm", "player"]


class SessionMember(BaseModel):
    user_id: str
    role: SessionRole = "player"


class SessionInfo(BaseModel):
    id: str
    members: Dict[str, SessionMember] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def member(self, user_id: str) -> Optional[SessionMember]:
        return self.members.get(user_id)

    def is_dm(self, user_id: str) -> bool:
        m = self.members.get(user_id)
        return m is not None and m.role == "dm"

    def session_type(self) -> str:
        return str(self.metadata.get("sessionType", ""))


class EncounterRepository(Protocol):
    def create(self, encounter: Encounter) -> None: ...

    def get(self, encounter_id: str) -> Encounter: ...

    def update(self, encounter: Encounter) -> None:
        """Compare-and-swap on ``encounter.version``; bumps it on success."""
        ...

    def delete(self, encounter_id: str) -> None: ...

    def get_by_session(self, session_id: str) -> List[Encounter]: ...

    def get_active_by_session(self, session_id: str) -> Optional[Encounter]: ...

    def get_by_message(self, message_id: str) -> Optional[Encounter]: ...


class CharacterProvider(Protocol):
    def get_by_id(self, character_id: str) -> Character: ...

    def save(self, character: Character) -> None: ...


class SessionProvider(Protocol):
    def get_session(self, session_id: str) -> SessionInfo: ...
