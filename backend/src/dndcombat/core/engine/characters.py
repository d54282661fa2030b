from __future__ import annotations

from typing import Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from dndcombat.core.engine.state import UNARMED_STRIKE, AttackProfile, DamageDice

Ability = Literal["str", "dex", "con", "int", "wis", "cha"]
ResourceRefresh = Literal["turn", "short_rest", "long_rest", "encounter"]

ABILITIES: tuple[str, ...] = ("str", "dex", "con", "int", "wis", "cha")


def ability_modifier(score: int) -> int:
    return (score - 10) // 2


def proficiency_bonus(level: int) -> int:
    return 2 + (max(level, 1) - 1) // 4


class Weapon(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str
    name: str
    dice_count: int = Field(default=1, ge=1)
    dice_sides: int = Field(default=6, ge=1)
    damage_type: str = "slashing"
    category: Literal["melee", "ranged"] = "melee"
    properties: List[str] = Field(default_factory=list)  # finesse, heavy, light, ...
    magic_bonus: int = 0

    def has_property(self, name: str) -> bool:
        return name in self.properties


class Resource(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max: int = Field(ge=0)
    current: int = Field(ge=0)
    refresh: ResourceRefresh = "long_rest"


class Character(BaseModel):
    """Snapshot of an externally owned player character."""

    model_config = ConfigDict(extra="forbid")

    id: str
    owner_id: str
    name: str
    level: int = Field(default=1, ge=1)

    max_hp: int = Field(ge=1)
    current_hp: int = Field(ge=0)
    temp_hp: int = Field(default=0, ge=0)
    ac: int = 10

    ability_scores: Dict[str, int] = Field(
        default_factory=lambda: {a: 10 for a in ABILITIES}
    )

    equipped_weapon: Optional[Weapon] = None
    weapon_proficiencies: Set[str] = Field(default_factory=set)
    save_proficiencies: Set[str] = Field(default_factory=set)
    feats: List[str] = Field(default_factory=list)
    resources: Dict[str, Resource] = Field(default_factory=dict)

    damage_resistances: Set[str] = Field(default_factory=set)
    damage_vulnerabilities: Set[str] = Field(default_factory=set)
    damage_immunities: Set[str] = Field(default_factory=set)

    def modifier(self, ability: str) -> int:
        return ability_modifier(self.ability_scores.get(ability.lower(), 10))

    @property
    def proficiency_bonus(self) -> int:
        return proficiency_bonus(self.level)

    def is_proficient_with(self, weapon: Weapon) -> bool:
        return weapon.key in self.weapon_proficiencies or (
            weapon.category in self.weapon_proficiencies
        )

    def has_save_proficiency(self, ability: str) -> bool:
        return ability.lower() in self.save_proficiencies

    def attack_ability(self) -> str:
        w = self.equipped_weapon
        if w is None:
            return "str"
        if w.category == "ranged":
            return "dex"
        if w.has_property("finesse"):
            return "dex" if self.modifier("dex") > self.modifier("str") else "str"
        return "str"

    def attack_profile(self) -> AttackProfile:
        """To-hit bonus and damage dice for the equipped weapon.

        Weapon proficiency is not part of the bonus: it is injected on the
        attack-roll event. Unarmed strikes carry it here because every
        character is proficient with them.
        """
        ability = self.attack_ability()
        mod = self.modifier(ability)
        w = self.equipped_weapon

        if w is None:
            return AttackProfile(
                name=UNARMED_STRIKE,
                to_hit_bonus=mod + self.proficiency_bonus,
                damage=[DamageDice(count=1, sides=4, bonus=mod, damage_type="bludgeoning")],
                weapon_key="unarmed_strike",
            )

        return AttackProfile(
            name=w.name,
            to_hit_bonus=mod + w.magic_bonus,
            damage=[
                DamageDice(
                    count=w.dice_count,
                    sides=w.dice_sides,
                    bonus=mod + w.magic_bonus,
                    damage_type=w.damage_type,
                )
            ],
            weapon_key=w.key,
            weapon_type=w.category,
            properties=list(w.properties),
        )

    def adjust_damage(self, amount: int, damage_type: str) -> tuple[int, Optional[str]]:
        """Returns (adjusted, modifier) with modifier in immune/resistant/vulnerable/None."""
        if amount <= 0:
            return 0, None

        dt = (damage_type or "").lower().strip()
        if dt in self.damage_immunities:
            return 0, "immune"

        is_res = dt in self.damage_resistances
        is_vul = dt in self.damage_vulnerabilities
        if is_res and is_vul:
            return amount, None
        if is_res:
            return amount // 2, "resistant"
        if is_vul:
            return amount * 2, "vulnerable"
        return amount, None

    def long_rest(self) -> None:
        self.current_hp = self.max_hp
        self.temp_hp = 0
        for res in self.resources.values():
            res.current = res.max
