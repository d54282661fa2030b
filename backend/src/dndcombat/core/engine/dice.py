from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from random import Random
from typing import Iterable, List, Literal, Optional, Protocol, Tuple

AdvState = Literal["normal", "advantage", "disadvantage"]


class DiceError(ValueError):
    pass


@dataclass(frozen=True)
class RollResult:
    total: int
    rolls: List[int] = field(default_factory=list)
    bonus: int = 0


@dataclass(frozen=True)
class D20Roll:
    """A d20 test: ``nat`` is the kept die, ``dice`` every die thrown."""

    nat: int
    dice: List[int]
    bonus: int
    total: int
    adv_state: AdvState = "normal"

    @property
    def is_critical(self) -> bool:
        return self.nat == 20


class Roller(Protocol):
    def roll(self, count: int, sides: int, bonus: int = 0) -> RollResult: ...


def _check(count: int, sides: int) -> None:
    if count < 1:
        raise DiceError(f"dice count must be at least 1, got {count}")
    if sides < 1:
        raise DiceError(f"dice sides must be at least 1, got {sides}")


class RandomRoller:
    def __init__(self, seed: Optional[int] = None) -> None:
        self._rng = Random(seed)
        self._lock = threading.Lock()

    def roll(self, count: int, sides: int, bonus: int = 0) -> RollResult:
        _check(count, sides)
        with self._lock:
            rolls = [self._rng.randint(1, sides) for _ in range(count)]
        return RollResult(total=sum(rolls) + bonus, rolls=rolls, bonus=bonus)


class ScriptedRoller:
    """Deterministic roller for tests: hands out queued die faces in order."""

    def __init__(self, rolls: Iterable[int] = ()) -> None:
        self._queue: List[int] = list(rolls)
        self.history: List[Tuple[int, int]] = []

    def set_rolls(self, rolls: Iterable[int]) -> None:
        self._queue = list(rolls)

    def add_rolls(self, *rolls: int) -> None:
        self._queue.extend(rolls)

    def reset(self) -> None:
        self._queue.clear()
        self.history.clear()

    @property
    def remaining(self) -> int:
        return len(self._queue)

    def roll(self, count: int, sides: int, bonus: int = 0) -> RollResult:
        _check(count, sides)
        rolls: List[int] = []
        for _ in range(count):
            if not self._queue:
                raise DiceError(f"scripted roller exhausted while rolling {count}d{sides}")
            value = self._queue.pop(0)
            if value < 1 or value > sides:
                raise DiceError(f"scripted roll {value} is out of range for d{sides}")
            rolls.append(value)
        self.history.append((count, sides))
        return RollResult(total=sum(rolls) + bonus, rolls=rolls, bonus=bonus)


_DICE_RE = re.compile(r"^\s*(\d+)d(\d+)\s*([+-]\s*\d+)?\s*$")


def parse_dice(formula: str) -> Tuple[int, int, int]:
    m = _DICE_RE.match(formula)
    if not m:
        raise DiceError(f"Unsupported dice formula: {formula!r}")
    n = int(m.group(1))
    d = int(m.group(2))
    mod = m.group(3)
    k = int(mod.replace(" ", "")) if mod else 0
    return n, d, k


def format_dice(count: int, sides: int, bonus: int = 0) -> str:
    if bonus > 0:
        return f"{count}d{sides}+{bonus}"
    if bonus < 0:
        return f"{count}d{sides}{bonus}"
    return f"{count}d{sides}"


def roll_formula(roller: Roller, formula: str) -> RollResult:
    n, d, k = parse_dice(formula)
    return roller.roll(n, d, k)


def combine_adv(*states: AdvState) -> AdvState:
    has_adv = any(s == "advantage" for s in states)
    has_dis = any(s == "disadvantage" for s in states)
    if has_adv and has_dis:
        return "normal"
    if has_adv:
        return "advantage"
    if has_dis:
        return "disadvantage"
    return "normal"


def roll_d20(roller: Roller, bonus: int, adv_state: AdvState = "normal") -> D20Roll:
    if adv_state == "normal":
        nat = roller.roll(1, 20).total
        return D20Roll(nat=nat, dice=[nat], bonus=bonus, total=nat + bonus)

    a = roller.roll(1, 20).total
    b = roller.roll(1, 20).total
    kept = max(a, b) if adv_state == "advantage" else min(a, b)
    return D20Roll(
        nat=kept, dice=[a, b], bonus=bonus, total=kept + bonus, adv_state=adv_state
    )
