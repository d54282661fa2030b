from __future__ import annotations

from fastapi import Request

from dndcombat.core.engine.service import EncounterService


def get_service(request: Request) -> EncounterService:
    return request.app.state.service
