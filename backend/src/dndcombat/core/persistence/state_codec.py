from __future__ import annotations

import inspect
from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Type, TypeVar, cast

from dndcombat.core.engine.state import Combatant, DamageDice, Encounter, MonsterAction

TModel = TypeVar("TModel")


# ---------- helpers ----------


def _build_model(model_cls: Type[TModel], data: dict[str, Any]) -> TModel:
    """Build a dataclass from ``data``, dropping keys its constructor doesn't take."""
    params = inspect.signature(model_cls).parameters
    allowed = {
        name
        for name, p in params.items()
        if p.kind in (inspect.Parameter.POSITIONAL_OR_KEYWORD, inspect.Parameter.KEYWORD_ONLY)
    }
    return cast(TModel, model_cls(**{k: v for k, v in data.items() if k in allowed}))


def _jsonable(v: Any) -> Any:
    if v is None or isinstance(v, (str, int, float, bool)):
        return v
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, (set, tuple, list)):
        return [_jsonable(x) for x in v]
    if isinstance(v, dict):
        return {str(k): _jsonable(val) for k, val in v.items()}
    if is_dataclass(v) and not isinstance(v, type):
        return _jsonable(asdict(cast(Any, v)))
    md = getattr(v, "model_dump", None)
    if callable(md):
        return _jsonable(md())
    return str(v)


def _as_datetime(v: Any) -> Optional[datetime]:
    if v is None or isinstance(v, datetime):
        return v
    return datetime.fromisoformat(str(v))


# ---------- Combatant ----------


def combatant_to_dict(c: Combatant) -> dict[str, Any]:
    return cast(dict[str, Any], _jsonable(c))


def combatant_from_dict(d: dict[str, Any]) -> Combatant:
    dd = dict(d)
    dd["actions"] = [
        MonsterAction(
            name=a["name"],
            attack_bonus=int(a.get("attack_bonus", 0)),
            damage=[_build_model(DamageDice, x) for x in a.get("damage", [])],
            description=a.get("description", ""),
        )
        for a in dd.get("actions") or []
    ]
    dd["abilities"] = {str(k): int(v) for k, v in (dd.get("abilities") or {}).items()}
    return _build_model(Combatant, dd)


# ---------- Encounter ----------


def encounter_to_dict(enc: Encounter) -> Dict[str, Any]:
    return cast(Dict[str, Any], _jsonable(enc))


def encounter_from_dict(d: Dict[str, Any]) -> Encounter:
    dd = dict(d)
    dd["combatants"] = {
        cid: combatant_from_dict(c) for cid, c in (dd.get("combatants") or {}).items()
    }
    dd["turn_order"] = list(dd.get("turn_order") or [])
    dd["combat_log"] = list(dd.get("combat_log") or [])
    for key in ("created_at", "started_at", "ended_at"):
        if key in dd:
            dd[key] = _as_datetime(dd[key])
    if dd.get("created_at") is None:
        dd.pop("created_at", None)
    return _build_model(Encounter, dd)
