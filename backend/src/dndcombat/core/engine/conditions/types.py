from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set


class ConditionType(str, Enum):
    BLINDED = "blinded"
    CHARMED = "charmed"
    DEAFENED = "deafened"
    FRIGHTENED = "frightened"
    GRAPPLED = "grappled"
    INCAPACITATED = "incapacitated"
    INVISIBLE = "invisible"
    PARALYZED = "paralyzed"
    PETRIFIED = "petrified"
    POISONED = "poisoned"
    PRONE = "prone"
    RESTRAINED = "restrained"
    STUNNED = "stunned"
    UNCONSCIOUS = "unconscious"
    EXHAUSTION = "exhaustion"
    SURPRISED = "surprised"
    DISADVANTAGE_NEXT_ATTACK = "disadvantage_next_attack"
    CONCENTRATION = "concentration"
    RAGE = "rage"


class DurationType(str, Enum):
    ROUNDS = "rounds"
    TURNS = "turns"
    UNTIL_REST = "until_rest"
    UNTIL_LONG_REST = "until_long_rest"
    CONCENTRATION = "concentration"
    PERMANENT = "permanent"
    INSTANT = "instant"
    UNTIL_DAMAGED = "until_damaged"
    END_OF_NEXT_TURN = "end_of_next_turn"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Condition:
    id: str
    type: ConditionType
    name: str
    description: str = ""
    source: str = ""
    source_id: str = ""
    duration_type: DurationType = DurationType.PERMANENT
    duration: int = 0
    remaining: int = 0
    level: int = 0

    # save to end
    save_dc: int = 0
    save_type: str = ""
    save_end: bool = False

    applied_at: datetime = field(default_factory=_utcnow)
    applied_by: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Effect:
    attack_advantage: bool = False
    attack_disadvantage: bool = False
    defense_advantage: bool = False
    defense_disadvantage: bool = False

    save_advantage: Set[str] = field(default_factory=set)
    save_disadvantage: Set[str] = field(default_factory=set)
    save_auto_fail: Set[str] = field(default_factory=set)

    resistance: Set[str] = field(default_factory=set)
    vulnerability: Set[str] = field(default_factory=set)
    immunity: Set[str] = field(default_factory=set)

    # None: speed unaffected
    speed_multiplier: Optional[float] = None

    incapacitated: bool = False
    cant_act: bool = False
    cant_react: bool = False
    cant_move: bool = False
    cant_speak: bool = False
    drop_items: bool = False
    fall_prone: bool = False

    def merge(self, other: "Effect") -> None:
        for f in fields(self):
            mine = getattr(self, f.name)
            theirs = getattr(other, f.name)
            if f.name == "speed_multiplier":
                if theirs is not None and (mine is None or theirs < mine):
                    self.speed_multiplier = theirs
            elif isinstance(mine, set):
                mine.update(theirs)
            elif theirs:
                setattr(self, f.name, True)

    def saves_with_disadvantage(self, ability: str) -> bool:
        return "all" in self.save_disadvantage or ability.upper() in self.save_disadvantage

    def saves_with_advantage(self, ability: str) -> bool:
        return "all" in self.save_advantage or ability.upper() in self.save_advantage

    def auto_fails(self, ability: str) -> bool:
        return ability.upper() in self.save_auto_fail


_STR_DEX = frozenset({"STR", "DEX"})
_PHYSICAL = frozenset({"bludgeoning", "piercing", "slashing"})


def standard_effect(condition_type: ConditionType) -> Effect:
    """Fixed 5e mechanics for a condition type; unknown types yield an empty effect."""
    ct = condition_type
    if ct == ConditionType.BLINDED:
        return Effect(attack_disadvantage=True, defense_advantage=True)
    if ct == ConditionType.FRIGHTENED:
        return Effect(attack_disadvantage=True)
    if ct == ConditionType.GRAPPLED:
        return Effect(speed_multiplier=0.0)
    if ct == ConditionType.INCAPACITATED:
        return Effect(incapacitated=True, cant_act=True, cant_react=True)
    if ct == ConditionType.INVISIBLE:
        return Effect(attack_advantage=True, defense_disadvantage=True)
    if ct in (ConditionType.PARALYZED, ConditionType.STUNNED):
        return Effect(
            incapacitated=True,
            cant_act=True,
            cant_react=True,
            cant_move=True,
            cant_speak=True,
            defense_advantage=True,
            save_auto_fail=set(_STR_DEX),
        )
    if ct == ConditionType.PETRIFIED:
        return Effect(
            resistance={"all"},
            immunity={"poison"},
            cant_act=True,
            cant_react=True,
            cant_move=True,
            cant_speak=True,
            defense_advantage=True,
            save_auto_fail=set(_STR_DEX),
        )
    if ct == ConditionType.POISONED:
        return Effect(attack_disadvantage=True, save_disadvantage={"all"})
    if ct == ConditionType.PRONE:
        return Effect(attack_disadvantage=True, speed_multiplier=0.5, fall_prone=True)
    if ct == ConditionType.RESTRAINED:
        return Effect(
            speed_multiplier=0.0,
            attack_disadvantage=True,
            defense_advantage=True,
            save_disadvantage={"DEX"},
        )
    if ct == ConditionType.UNCONSCIOUS:
        return Effect(
            incapacitated=True,
            cant_act=True,
            cant_react=True,
            cant_move=True,
            cant_speak=True,
            drop_items=True,
            fall_prone=True,
            defense_advantage=True,
            save_auto_fail=set(_STR_DEX),
        )
    if ct == ConditionType.RAGE:
        # the damage bonus belongs to the raging attacker, not to this table
        return Effect(resistance=set(_PHYSICAL), save_advantage={"STR"})
    return Effect()


CONDITION_DESCRIPTIONS: Dict[ConditionType, str] = {
    ConditionType.BLINDED: "Can't see. Auto-fails sight checks. Disadvantage on attacks. Attacks against have advantage.",
    ConditionType.CHARMED: "Can't attack charmer. Charmer has advantage on social checks.",
    ConditionType.DEAFENED: "Can't hear. Auto-fails hearing checks.",
    ConditionType.FRIGHTENED: "Disadvantage on ability checks and attacks while source is in sight. Can't willingly move closer.",
    ConditionType.GRAPPLED: "Speed is 0. Condition ends if grappler is incapacitated or moved away.",
    ConditionType.INCAPACITATED: "Can't take actions or reactions.",
    ConditionType.INVISIBLE: "Can't be seen. Has advantage on attacks. Attacks against have disadvantage.",
    ConditionType.PARALYZED: "Incapacitated, can't move or speak. Auto-fails STR and DEX saves. Attacks have advantage. Hits within 5 ft are crits.",
    ConditionType.PETRIFIED: "Transformed to stone. Incapacitated, can't move or speak. Resistance to all damage. Immune to poison.",
    ConditionType.POISONED: "Disadvantage on attack rolls and ability checks.",
    ConditionType.PRONE: "Only move by crawling. Disadvantage on attacks. Melee attacks within 5 ft have advantage, ranged have disadvantage.",
    ConditionType.RESTRAINED: "Speed is 0. Disadvantage on attacks and DEX saves. Attacks against have advantage.",
    ConditionType.STUNNED: "Incapacitated, can't move, can speak only falteringly. Auto-fails STR and DEX saves. Attacks against have advantage.",
    ConditionType.UNCONSCIOUS: "Incapacitated, can't move or speak, unaware. Drops held items and falls prone. Auto-fails STR and DEX saves.",
    ConditionType.EXHAUSTION: "Level-based penalties, from disadvantage on checks at level 1 to death at level 6.",
    ConditionType.SURPRISED: "Can't move or take actions on the first turn of combat.",
    ConditionType.DISADVANTAGE_NEXT_ATTACK: "The next attack roll has disadvantage.",
    ConditionType.CONCENTRATION: "Concentrating on a spell. Taking damage requires a save or lose concentration.",
    ConditionType.RAGE: "Advantage on STR checks/saves. Bonus damage. Resistance to physical damage.",
}


def describe(condition_type: ConditionType) -> str:
    return CONDITION_DESCRIPTIONS.get(condition_type, "")


def display_name(condition_type: ConditionType) -> str:
    return condition_type.value.replace("_", " ").title()
