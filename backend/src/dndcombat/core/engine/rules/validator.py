from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from dndcombat.core.engine.state import Encounter
from dndcombat.core.errors import EngineError, ErrorCode


@dataclass
class ValidationError:
    code: str
    message: str
    kind: ErrorCode = ErrorCode.INVALID_ARGUMENT
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    ok: bool
    errors: List[ValidationError] = field(default_factory=list)

    def raise_for_errors(self) -> None:
        if self.ok:
            return
        first = self.errors[0]
        raise EngineError(first.kind, first.message, {"code": first.code, **first.meta})


_OK = ValidationResult(ok=True)


def _err(code: str, message: str, kind: ErrorCode = ErrorCode.INVALID_ARGUMENT, **meta: Any) -> ValidationResult:
    return ValidationResult(
        ok=False, errors=[ValidationError(code=code, message=message, kind=kind, meta=meta)]
    )


def validate_active(enc: Encounter) -> ValidationResult:
    if enc.status != "active":
        return _err(
            "ENCOUNTER_NOT_ACTIVE",
            "encounter is not active",
            encounter_id=enc.id,
            status=enc.status,
        )
    return _OK


def validate_combatant(enc: Encounter, combatant_id: str, role: str) -> ValidationResult:
    c = enc.combatants.get(combatant_id)
    if c is None:
        return _err(
            "COMBATANT_NOT_FOUND",
            f"{role} not found",
            kind=ErrorCode.NOT_FOUND,
            combatant_id=combatant_id,
        )
    if not c.is_active:
        return _err(
            "COMBATANT_INACTIVE",
            f"{role} is not active",
            combatant_id=combatant_id,
        )
    return _OK


def validate_attack(enc: Encounter, attacker_id: str, target_id: str) -> ValidationResult:
    for res in (
        validate_active(enc),
        validate_combatant(enc, attacker_id, "attacker"),
        validate_combatant(enc, target_id, "target"),
    ):
        if not res.ok:
            return res
    return _OK


def validate_setup(enc: Encounter, operation: str) -> ValidationResult:
    if enc.status != "setup":
        return _err(
            "ENCOUNTER_NOT_IN_SETUP",
            f"cannot {operation} once initiative has been rolled",
            encounter_id=enc.id,
            status=enc.status,
        )
    return _OK
