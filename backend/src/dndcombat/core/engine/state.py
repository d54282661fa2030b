from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Literal, Optional, Tuple

from dndcombat.core.engine.dice import Roller

logger = logging.getLogger(__name__)

CombatantType = Literal["player", "monster", "npc"]
EncounterStatus = Literal["setup", "rolling", "active", "completed"]

UNARMED_STRIKE = "Unarmed Strike"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DamageDice:
    count: int
    sides: int
    bonus: int = 0
    damage_type: str = "bludgeoning"

    def formula(self) -> str:
        if self.bonus > 0:
            return f"{self.count}d{self.sides}+{self.bonus}"
        if self.bonus < 0:
            return f"{self.count}d{self.sides}{self.bonus}"
        return f"{self.count}d{self.sides}"


@dataclass
class MonsterAction:
    name: str
    attack_bonus: int
    damage: List[DamageDice] = field(default_factory=list)
    description: str = ""


@dataclass
class AttackProfile:
    """Resolved weapon/action used for one attack."""

    name: str
    to_hit_bonus: int
    damage: List[DamageDice]
    weapon_key: str = ""
    weapon_type: Literal["melee", "ranged"] = "melee"
    properties: List[str] = field(default_factory=list)

    @property
    def damage_type(self) -> str:
        return self.damage[0].damage_type if self.damage else "bludgeoning"


def unarmed_strike() -> AttackProfile:
    return AttackProfile(
        name=UNARMED_STRIKE,
        to_hit_bonus=0,
        damage=[DamageDice(count=1, sides=4, bonus=0, damage_type="bludgeoning")],
        weapon_key="unarmed_strike",
    )


@dataclass
class Combatant:
    id: str
    name: str
    type: CombatantType
    max_hp: int
    current_hp: int
    ac: int
    temp_hp: int = 0
    speed: int = 30
    initiative_bonus: int = 0
    initiative: int = 0
    is_active: bool = True
    has_acted: bool = False

    # player
    player_id: str = ""
    character_id: str = ""

    # monster / npc
    monster_ref: str = ""
    actions: List[MonsterAction] = field(default_factory=list)
    abilities: Dict[str, int] = field(default_factory=dict)

    # abilities ("WIS") saved successfully during the current turn
    passed_saves: List[str] = field(default_factory=list)

    @property
    def is_player(self) -> bool:
        return self.type == "player"

    @property
    def is_monster(self) -> bool:
        return self.type == "monster"

    def action_at(self, index: int) -> Optional[MonsterAction]:
        if 0 <= index < len(self.actions):
            return self.actions[index]
        return None


@dataclass(frozen=True)
class DamageOutcome:
    damage: int
    absorbed_by_temp: int
    hp_before: int
    hp_after: int
    defeated: bool
    combat_ended: bool = False
    players_won: bool = False


@dataclass
class Encounter:
    id: str
    session_id: str
    name: str
    created_by: str
    channel_id: str = ""
    message_id: str = ""
    description: str = ""
    status: EncounterStatus = "setup"
    round: int = 0
    turn: int = 0
    combatants: Dict[str, Combatant] = field(default_factory=dict)
    turn_order: List[str] = field(default_factory=list)
    combat_log: List[str] = field(default_factory=list)
    players_won: Optional[bool] = None
    version: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    # --- lookup ---

    def current_combatant(self) -> Optional[Combatant]:
        if self.status != "active" or not self.turn_order:
            return None
        if self.turn < 0 or self.turn >= len(self.turn_order):
            return None
        return self.combatants.get(self.turn_order[self.turn])

    def combatant_for_player(self, player_id: str) -> Optional[Combatant]:
        for c in self.combatants.values():
            if c.is_player and c.player_id == player_id:
                return c
        return None

    def is_player_turn(self, player_id: str) -> bool:
        cur = self.current_combatant()
        return cur is not None and cur.is_player and cur.player_id == player_id

    def can_player_act(self, user_id: str) -> bool:
        # the referee may always act
        if user_id == self.created_by:
            return True
        return self.is_player_turn(user_id)

    # --- setup ---

    def add_combatant(self, combatant: Combatant) -> bool:
        if self.status != "setup" or combatant.id in self.combatants:
            return False
        self.combatants[combatant.id] = combatant
        return True

    def remove_combatant(self, combatant_id: str) -> bool:
        if self.status != "setup" or combatant_id not in self.combatants:
            return False
        del self.combatants[combatant_id]
        self.turn_order = [cid for cid in self.turn_order if cid != combatant_id]
        return True

    # --- lifecycle ---

    def roll_initiative(
        self,
        roller: Roller,
        adjust: Optional[Callable[["Combatant", int], int]] = None,
    ) -> bool:
        """Roll 1d20 + bonus for everyone and order the turn sequence.

        ``adjust(combatant, total) -> int`` lets the caller rewrite a total
        before it is stored. Combatants are rolled in id order so scripted
        rolls are consumed reproducibly; ties keep that order.
        """
        if self.status != "setup" or not self.combatants:
            return False

        self.add_log_entry("Rolling initiative")
        rolled: List[Tuple[str, int]] = []
        for cid in sorted(self.combatants):
            c = self.combatants[cid]
            res = roller.roll(1, 20, c.initiative_bonus)
            total = res.total
            if adjust is not None:
                total = adjust(c, total)
            c.initiative = total
            rolled.append((cid, total))
            self.add_log_entry(
                f"{c.name} rolls initiative: d20 ({res.rolls[0]}) {c.initiative_bonus:+d} = {total}"
            )

        rolled.sort(key=lambda it: it[1], reverse=True)
        self.turn_order = [cid for cid, _ in rolled]
        self.status = "rolling"
        return True

    def start(self) -> bool:
        if self.status != "rolling" or not self.turn_order:
            return False
        if not any(self._is_live(cid) for cid in self.turn_order):
            return False

        self.status = "active"
        self.round = 1
        self.turn = 0
        self.started_at = _utcnow()
        for c in self.combatants.values():
            c.has_acted = False

        if not self._is_live(self.turn_order[0]):
            self._step_to_next_live()

        self.add_log_entry("Combat begins!")
        logger.info("encounter %s started with %d combatants", self.id, len(self.turn_order))

        # a one-sided battle is decided before anyone acts
        ended, players_won = self.check_combat_end()
        if ended:
            self.finish(players_won)
        return True

    def advance_turn(self) -> bool:
        """Move to the next live combatant; wraps into a new round at the end of the order."""
        if self.status != "active" or not self.turn_order:
            return False

        cur = self.current_combatant()
        if cur is not None:
            cur.has_acted = True

        self._step_to_next_live()

        ended, players_won = self.check_combat_end()
        if ended:
            self.finish(players_won)
        return True

    def _step_to_next_live(self) -> None:
        n = len(self.turn_order)
        idx = self.turn
        for _ in range(n):
            idx += 1
            if idx >= n:
                idx = 0
                self.round += 1
                for c in self.combatants.values():
                    c.has_acted = False
            if self._is_live(self.turn_order[idx]):
                break
        self.turn = idx

    def _is_live(self, combatant_id: str) -> bool:
        c = self.combatants.get(combatant_id)
        return c is not None and c.is_active and c.current_hp > 0

    def check_combat_end(self) -> Tuple[bool, bool]:
        monsters = 0
        players = 0
        for c in self.combatants.values():
            if not c.is_active:
                continue
            if c.type == "monster":
                monsters += 1
            elif c.type == "player":
                players += 1

        if monsters == 0 and players > 0:
            return True, True
        if players == 0 and monsters > 0:
            return True, False
        return False, False

    def finish(self, players_won: bool) -> bool:
        if not self.end():
            return False
        self.players_won = players_won
        if players_won:
            self.add_log_entry("Victory! All enemies have been defeated!")
        else:
            self.add_log_entry("Defeat! The party has fallen...")
        return True

    def end(self) -> bool:
        if self.status == "completed":
            return False
        self.status = "completed"
        self.ended_at = _utcnow()
        logger.info("encounter %s completed after %d round(s)", self.id, self.round)
        return True

    # --- hit points ---

    def apply_damage(
        self,
        combatant_id: str,
        amount: int,
        narrate: Optional[Callable[[Combatant, bool], str]] = None,
    ) -> Optional[DamageOutcome]:
        """Temp HP first, then HP, floored at 0.

        ``narrate(combatant, defeated)`` replaces the default damage lines
        with a single caller-built line.
        """
        c = self.combatants.get(combatant_id)
        if c is None:
            return None

        hp_before = c.current_hp
        remaining = max(0, amount)
        absorbed = 0
        if c.temp_hp > 0 and remaining > 0:
            absorbed = min(c.temp_hp, remaining)
            c.temp_hp -= absorbed
            remaining -= absorbed
        if remaining > 0:
            c.current_hp = max(0, c.current_hp - remaining)

        defeated = False
        if c.current_hp == 0 and c.is_active:
            c.is_active = False
            defeated = True

        if narrate is not None:
            self.add_log_entry(narrate(c, defeated))
        else:
            self.add_log_entry(f"{c.name} takes {max(0, amount)} damage ({c.current_hp}/{c.max_hp} HP)")
            if defeated:
                self.add_log_entry(f"{c.name} was defeated!")

        ended, players_won = self.check_combat_end()
        if ended and self.status == "active":
            self.finish(players_won)
        else:
            ended = False
            players_won = False

        return DamageOutcome(
            damage=max(0, amount),
            absorbed_by_temp=absorbed,
            hp_before=hp_before,
            hp_after=c.current_hp,
            defeated=defeated,
            combat_ended=ended,
            players_won=players_won,
        )

    def heal(self, combatant_id: str, amount: int) -> Optional[int]:
        c = self.combatants.get(combatant_id)
        if c is None:
            return None
        before = c.current_hp
        c.current_hp = min(c.max_hp, c.current_hp + max(0, amount))
        if c.current_hp > 0:
            c.is_active = True
        return c.current_hp - before

    def add_temp_hp(self, combatant_id: str, amount: int) -> bool:
        c = self.combatants.get(combatant_id)
        if c is None:
            return False
        # temporary hit points don't stack, keep the larger pool
        c.temp_hp = max(c.temp_hp, amount)
        return True

    # --- log ---

    def add_log_entry(self, entry: str) -> None:
        if self.round > 0:
            entry = f"Round {self.round}: {entry}"
        self.combat_log.append(entry)
