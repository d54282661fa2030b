from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dndcombat.core.engine.conditions.types import Effect
from dndcombat.core.engine.dice import AdvState, Roller, combine_adv
from dndcombat.core.engine.state import AttackProfile, DamageDice


@dataclass
class DamageRoll:
    total: int = 0
    rolls: List[int] = field(default_factory=list)
    bonus: int = 0
    dice: str = ""


def roll_damage(roller: Roller, components: List[DamageDice], critical: bool) -> DamageRoll:
    """Roll every damage component; a critical re-rolls each component's dice once more."""
    out = DamageRoll()
    exprs: List[str] = []
    for comp in components:
        res = roller.roll(comp.count, comp.sides, comp.bonus)
        out.total += res.total
        out.rolls.extend(res.rolls)
        out.bonus += comp.bonus

        if critical:
            extra = roller.roll(comp.count, comp.sides, 0)
            out.total += extra.total
            out.rolls.extend(extra.rolls)

        n = comp.count * 2 if critical else comp.count
        exprs.append(f"{n}d{comp.sides}")
    out.dice = "+".join(exprs)
    out.total = max(0, out.total)
    return out


def attack_adv_state(
    attacker: Effect, target: Effect, extra_disadvantage: bool = False
) -> AdvState:
    states: List[AdvState] = []
    if attacker.attack_advantage or target.defense_advantage:
        states.append("advantage")
    if attacker.attack_disadvantage or target.defense_disadvantage or extra_disadvantage:
        states.append("disadvantage")
    return combine_adv(*states)


def adjust_for_effects(
    amount: int, damage_type: str, effect: Effect
) -> Tuple[int, Optional[str]]:
    """Resistances granted by conditions (petrified, rage, ...)."""
    if amount <= 0:
        return 0, None
    dt = (damage_type or "").lower()

    def _has(tags: set) -> bool:
        return "all" in tags or dt in tags

    if _has(effect.immunity):
        return 0, "immune"
    is_res = _has(effect.resistance)
    is_vul = _has(effect.vulnerability)
    if is_res and is_vul:
        return amount, None
    if is_res:
        return amount // 2, "resistant"
    if is_vul:
        return amount * 2, "vulnerable"
    return amount, None


def format_attack_log(
    *,
    attacker: str,
    target: str,
    profile: AttackProfile,
    nat: int,
    bonus: int,
    total: int,
    target_ac: int,
    hit: bool,
    critical: bool,
    damage: int,
    damage_roll: Optional[DamageRoll],
    defeated: bool,
) -> str:
    head = f"{attacker} -> {target} ({profile.name})"
    check = f"d20:{nat}{bonus:+d}={total} vs AC:{target_ac}"
    if not hit:
        return f"{head} | MISS [{check}]"

    dmg = ""
    if damage_roll is not None:
        rolls = ", ".join(str(r) for r in damage_roll.rolls)
        dmg = f", dmg:{damage_roll.dice}: [{rolls}]{damage_roll.bonus:+d}"
    tag = "CRIT!" if critical else "HIT"
    line = f"{head} | {tag} {damage} damage [{check}{dmg}]"
    if defeated:
        line += " - defeated"
    return line
