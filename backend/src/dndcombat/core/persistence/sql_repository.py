from __future__ import annotations

from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dndcombat.core.engine.state import Encounter
from dndcombat.core.errors import RecordExists, RecordNotFound, VersionConflict
from dndcombat.core.persistence.state_codec import encounter_from_dict, encounter_to_dict
from dndcombat.db.models import EncounterRecord


class SqlEncounterRepository:
    """Encounters as JSON documents; ``update`` is a compare-and-swap on ``version``."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _to_encounter(rec: EncounterRecord) -> Encounter:
        enc = encounter_from_dict(dict(rec.state_json))
        enc.version = rec.version
        return enc

    def create(self, encounter: Encounter) -> None:
        with self._session_factory() as db:
            if db.get(EncounterRecord, encounter.id) is not None:
                raise RecordExists(f"encounter {encounter.id} already exists")
            encounter.version = 1
            db.add(
                EncounterRecord(
                    id=encounter.id,
                    session_id=encounter.session_id,
                    message_id=encounter.message_id,
                    name=encounter.name,
                    status=encounter.status,
                    version=1,
                    state_json=encounter_to_dict(encounter),
                )
            )
            db.commit()

    def get(self, encounter_id: str) -> Encounter:
        with self._session_factory() as db:
            rec = db.get(EncounterRecord, encounter_id)
            if rec is None:
                raise RecordNotFound(f"encounter {encounter_id} not found")
            return self._to_encounter(rec)

    def update(self, encounter: Encounter) -> None:
        new_version = encounter.version + 1
        snapshot = encounter_to_dict(encounter)
        snapshot["version"] = new_version

        with self._session_factory() as db:
            res = db.execute(
                update(EncounterRecord)
                .where(
                    EncounterRecord.id == encounter.id,
                    EncounterRecord.version == encounter.version,
                )
                .values(
                    message_id=encounter.message_id,
                    name=encounter.name,
                    status=encounter.status,
                    version=new_version,
                    state_json=snapshot,
                )
            )
            if res.rowcount == 0:
                db.rollback()
                if db.get(EncounterRecord, encounter.id) is None:
                    raise RecordNotFound(f"encounter {encounter.id} not found")
                raise VersionConflict(f"encounter {encounter.id} was modified concurrently")
            db.commit()
        encounter.version = new_version

    def delete(self, encounter_id: str) -> None:
        with self._session_factory() as db:
            rec = db.get(EncounterRecord, encounter_id)
            if rec is None:
                raise RecordNotFound(f"encounter {encounter_id} not found")
            db.delete(rec)
            db.commit()

    def get_by_session(self, session_id: str) -> List[Encounter]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(EncounterRecord)
                .where(EncounterRecord.session_id == session_id)
                .order_by(EncounterRecord.created_at)
            ).all()
            return [self._to_encounter(r) for r in rows]

    def get_active_by_session(self, session_id: str) -> Optional[Encounter]:
        with self._session_factory() as db:
            rec = db.scalars(
                select(EncounterRecord).where(
                    EncounterRecord.session_id == session_id,
                    EncounterRecord.status != "completed",
                )
            ).first()
            return self._to_encounter(rec) if rec is not None else None

    def get_by_message(self, message_id: str) -> Optional[Encounter]:
        if not message_id:
            return None
        with self._session_factory() as db:
            rec = db.scalars(
                select(EncounterRecord).where(EncounterRecord.message_id == message_id)
            ).first()
            return self._to_encounter(rec) if rec is not None else None
