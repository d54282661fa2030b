from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional
from uuid import uuid4

from dndcombat.core.adapters.mapper import combatant_from_character, combatant_from_monster
from dndcombat.core.engine.characters import Character, ability_modifier
from dndcombat.core.engine.commands import (
    AddMonster,
    ApplyCondition,
    Attack,
    CreateEncounter,
    ExecuteAttack,
    RollSave,
    SpellDamage,
)
from dndcombat.core.engine.conditions.manager import ConditionService
from dndcombat.core.engine.conditions.types import Condition, ConditionType
from dndcombat.core.engine.dice import AdvState, RandomRoller, Roller, combine_adv, roll_d20
from dndcombat.core.engine.entities import AnyEntity, entity_for
from dndcombat.core.engine.events import (
    ContextKey,
    ContextValue,
    EventBus,
    EventType,
    GameEvent,
    new_event,
)
from dndcombat.core.engine.feats.registry import FeatRegistry
from dndcombat.core.engine.results import (
    AttackResult,
    ExecuteAttackResult,
    SavingThrowResult,
    SpellDamageResult,
)
from dndcombat.core.engine.rules.attack import (
    adjust_for_effects,
    attack_adv_state,
    format_attack_log,
    roll_damage,
)
from dndcombat.core.engine.rules.validator import (
    validate_active,
    validate_attack,
    validate_combatant,
    validate_setup,
)
from dndcombat.core.engine.state import (
    AttackProfile,
    Combatant,
    DamageOutcome,
    Encounter,
    unarmed_strike,
)
from dndcombat.core.errors import (
    EngineError,
    invalid_argument,
    not_found,
    permission_denied,
    wrap,
)
from dndcombat.core.ports import (
    CharacterProvider,
    EncounterRepository,
    RecordNotFound,
    SessionInfo,
    SessionProvider,
)

logger = logging.getLogger(__name__)


@contextmanager
def _dependency(operation: str) -> Iterator[None]:
    try:
        yield
    except EngineError:
        raise
    except RecordNotFound as exc:
        raise wrap(exc, operation) from exc
    except Exception as exc:
        logger.error("%s failed: %s", operation, exc)
        raise wrap(exc, operation) from exc


class EncounterService:
    """Combat engine: every public method is one get-modify-update cycle.

    Rule modifiers never live here. The service publishes well-known events
    on the bus and reads the (possibly rewritten) context back.
    """

    def __init__(
        self,
        repository: EncounterRepository,
        characters: CharacterProvider,
        sessions: SessionProvider,
        *,
        roller: Optional[Roller] = None,
        bus: Optional[EventBus] = None,
        conditions: Optional[ConditionService] = None,
        feats: Optional[FeatRegistry] = None,
        dungeon_session_type: str = "dungeon",
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self.repository = repository
        self.characters = characters
        self.sessions = sessions
        self.roller: Roller = roller or RandomRoller()
        self.bus = bus or EventBus()
        self.conditions = conditions or ConditionService(self.bus)
        self.feats = feats
        self._dungeon_type = dungeon_session_type
        self._new_id = id_factory or (lambda: str(uuid4()))

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    def _get(self, encounter_id: str, operation: str) -> Encounter:
        try:
            return self.repository.get(encounter_id)
        except RecordNotFound:
            raise not_found("encounter not found", encounter_id=encounter_id, operation=operation)
        except EngineError:
            raise
        except Exception as exc:
            raise wrap(exc, operation) from exc

    def _commit(self, enc: Encounter, operation: str, status_before: str) -> None:
        with _dependency(operation):
            self.repository.update(enc)

        if status_before != "completed" and enc.status == "completed":
            self.bus.publish(
                new_event(
                    EventType.ON_COMBAT_END,
                    **{
                        ContextKey.ENCOUNTER_ID: enc.id,
                        ContextKey.ROUND: enc.round,
                        "players_won": bool(enc.players_won),
                    },
                )
            )
            self._release(enc)

    def _release(self, enc: Encounter) -> None:
        for c in enc.combatants.values():
            self.conditions.clear(c.id)
            if c.is_player and c.character_id and self.feats is not None:
                self.feats.unregister_handlers(c.character_id, self.bus)

    def _session(self, session_id: str, operation: str) -> SessionInfo:
        try:
            return self.sessions.get_session(session_id)
        except RecordNotFound:
            raise not_found("session not found", session_id=session_id, operation=operation)
        except Exception as exc:
            raise wrap(exc, operation) from exc

    def _is_dungeon(self, session: SessionInfo) -> bool:
        return session.session_type() == self._dungeon_type

    def _dungeon_bypass(self, enc: Encounter) -> bool:
        """Dungeon flag for turn-gated checks; an unreadable session denies."""
        try:
            session = self.sessions.get_session(enc.session_id)
        except Exception as exc:
            logger.warning("session lookup for encounter %s failed: %s", enc.id, exc)
            raise permission_denied("unable to verify permissions", encounter_id=enc.id)
        return self._is_dungeon(session)

    def _require_creator_or_dungeon(self, enc: Encounter, user_id: str, action: str) -> None:
        if user_id == enc.created_by:
            return
        if self._is_dungeon(self._session(enc.session_id, action)):
            return
        raise permission_denied(f"only the encounter creator can {action}", user_id=user_id)

    def _require_dm(self, enc: Encounter, user_id: str, action: str) -> None:
        if user_id == enc.created_by:
            return
        session = self._session(enc.session_id, action)
        if self._is_dungeon(session) or session.is_dm(user_id):
            return
        raise permission_denied(f"only the DM can {action}", user_id=user_id)

    def _require_actor(self, enc: Encounter, user_id: str, action: str) -> None:
        if enc.can_player_act(user_id):
            return
        if self._dungeon_bypass(enc):
            return
        raise permission_denied(f"you cannot {action} right now", user_id=user_id)

    @staticmethod
    def _require_open(enc: Encounter) -> None:
        if enc.status == "completed":
            raise invalid_argument("encounter has already ended", encounter_id=enc.id)

    @staticmethod
    def _combatant(enc: Encounter, combatant_id: str) -> Combatant:
        c = enc.combatants.get(combatant_id)
        if c is None:
            raise not_found("combatant not found", combatant_id=combatant_id)
        return c

    def _character(self, character_id: str, operation: str) -> Character:
        try:
            return self.characters.get_by_id(character_id)
        except RecordNotFound:
            raise not_found(
                "character not found", character_id=character_id, operation=operation
            )
        except Exception as exc:
            raise wrap(exc, operation) from exc

    def _character_of(self, c: Combatant, operation: str) -> Optional[Character]:
        if c.is_player and c.character_id:
            return self._character(c.character_id, operation)
        return None

    def _entity(self, c: Combatant, operation: str) -> AnyEntity:
        return entity_for(c, self._character_of(c, operation))

    def _mirror_hp(self, enc: Encounter, combatant_id: str, operation: str) -> None:
        c = enc.combatants.get(combatant_id)
        if c is None or not c.is_player or not c.character_id:
            return
        ch = self._character(c.character_id, operation)
        ch.current_hp = c.current_hp
        ch.temp_hp = c.temp_hp
        with _dependency(operation):
            self.characters.save(ch)

    def _publish(
        self,
        event_type: str,
        actor: Optional[AnyEntity] = None,
        target: Optional[AnyEntity] = None,
        **context: ContextValue,
    ) -> GameEvent:
        return self.bus.publish(new_event(event_type, actor=actor, target=target, **context))

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    def get_encounter(self, encounter_id: str) -> Encounter:
        return self._get(encounter_id, "get encounter")

    def get_active_encounter(self, session_id: str) -> Optional[Encounter]:
        with _dependency("get active encounter"):
            return self.repository.get_active_by_session(session_id)

    def get_by_message(self, message_id: str) -> Optional[Encounter]:
        with _dependency("get encounter by message"):
            return self.repository.get_by_message(message_id)

    # ------------------------------------------------------------------
    # setup
    # ------------------------------------------------------------------

    def create_encounter(self, cmd: CreateEncounter) -> Encounter:
        name = cmd.name.strip()
        if not name:
            raise invalid_argument("encounter name is required")

        session = self._session(cmd.session_id, "create encounter")
        member = session.member(cmd.created_by)
        if member is None:
            if not self._is_dungeon(session):
                raise permission_denied(
                    "you are not a member of this session", user_id=cmd.created_by
                )
        elif member.role != "dm":
            raise permission_denied("only the DM can create encounters", user_id=cmd.created_by)

        existing = self.get_active_encounter(cmd.session_id)
        if existing is not None:
            raise invalid_argument(
                "session already has an active encounter", encounter_id=existing.id
            )

        enc = Encounter(
            id=self._new_id(),
            session_id=cmd.session_id,
            name=name,
            created_by=cmd.created_by,
            channel_id=cmd.channel_id,
            description=cmd.description,
        )
        with _dependency("create encounter"):
            self.repository.create(enc)
        logger.info("encounter %s created in session %s", enc.id, enc.session_id)
        return enc

    def add_monster(self, encounter_id: str, user_id: str, cmd: AddMonster) -> Combatant:
        enc = self._get(encounter_id, "add monster")
        self._require_dm(enc, user_id, "add monsters")
        validate_setup(enc, "add monsters").raise_for_errors()

        combatant = combatant_from_monster(cmd, combatant_id=self._new_id())
        if not enc.add_combatant(combatant):
            raise invalid_argument("monster cannot be added", encounter_id=enc.id)
        enc.add_log_entry(f"{combatant.name} joins the encounter")

        self._commit(enc, "add monster", "setup")
        return combatant

    def add_player(self, encounter_id: str, player_id: str, character_id: str) -> Combatant:
        enc = self._get(encounter_id, "add player")
        validate_setup(enc, "add players").raise_for_errors()

        character = self._character(character_id, "add player")
        if character.owner_id != player_id:
            raise permission_denied("you don't own this character", character_id=character_id)
        if enc.combatant_for_player(player_id) is not None:
            raise invalid_argument("player already in encounter", player_id=player_id)

        if self._is_dungeon(self._session(enc.session_id, "add player")):
            # dungeon runs start fresh
            character.long_rest()
            with _dependency("add player"):
                self.characters.save(character)

        if self.feats is not None:
            self.feats.register_handlers(character, self.bus)

        combatant = combatant_from_character(
            character, combatant_id=self._new_id(), player_id=player_id
        )
        if not enc.add_combatant(combatant):
            raise invalid_argument("player cannot be added", encounter_id=enc.id)
        enc.add_log_entry(f"{combatant.name} joins the encounter")

        self._commit(enc, "add player", "setup")
        return combatant

    def remove_combatant(self, encounter_id: str, combatant_id: str, user_id: str) -> None:
        enc = self._get(encounter_id, "remove combatant")
        c = self._combatant(enc, combatant_id)
        if user_id != enc.created_by and not (c.is_player and c.player_id == user_id):
            raise permission_denied("only the DM or the owning player can remove a combatant")
        validate_setup(enc, "remove combatants").raise_for_errors()

        if not enc.remove_combatant(combatant_id):
            raise invalid_argument("combatant cannot be removed", combatant_id=combatant_id)
        enc.add_log_entry(f"{c.name} leaves the encounter")
        self.conditions.clear(combatant_id)
        if c.is_player and c.character_id and self.feats is not None:
            self.feats.unregister_handlers(c.character_id, self.bus)

        self._commit(enc, "remove combatant", "setup")

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def roll_initiative(self, encounter_id: str, user_id: str) -> Encounter:
        enc = self._get(encounter_id, "roll initiative")
        self._require_creator_or_dungeon(enc, user_id, "roll initiative")
        validate_setup(enc, "roll initiative").raise_for_errors()
        if not enc.combatants:
            raise invalid_argument("encounter has no combatants", encounter_id=enc.id)

        entities: Dict[str, AnyEntity] = {
            cid: self._entity(c, "roll initiative") for cid, c in enc.combatants.items()
        }

        def adjust(c: Combatant, total: int) -> int:
            ev = self._publish(
                EventType.ON_INITIATIVE_ROLL,
                actor=entities[c.id],
                **{ContextKey.INITIATIVE: total, ContextKey.ENCOUNTER_ID: enc.id},
            )
            v = ev.context.get_int(ContextKey.INITIATIVE)
            return v if v is not None else total

        with _dependency("roll initiative"):
            ok = enc.roll_initiative(self.roller, adjust)
        if not ok:
            raise invalid_argument("initiative cannot be rolled", status=enc.status)

        self._commit(enc, "roll initiative", "setup")
        return enc

    def start_encounter(self, encounter_id: str, user_id: str) -> Encounter:
        enc = self._get(encounter_id, "start encounter")
        self._require_creator_or_dungeon(enc, user_id, "start the encounter")
        status_before = enc.status
        if not enc.start():
            raise invalid_argument("encounter cannot be started", status=enc.status)

        first = enc.current_combatant()
        if first is not None:
            first.passed_saves = []
            self.conditions.process_turn_start(first.id)
            self._publish_turn_start(enc, first)

        self._commit(enc, "start encounter", status_before)
        return enc

    def next_turn(self, encounter_id: str, user_id: str) -> Encounter:
        enc = self._get(encounter_id, "next turn")
        validate_active(enc).raise_for_errors()
        cur = enc.current_combatant()
        if cur is None:
            raise invalid_argument("encounter has no current combatant", encounter_id=enc.id)

        own_turn = cur.is_player and cur.player_id == user_id
        if user_id != enc.created_by and not own_turn:
            # in a dungeon anyone may move the monsters along
            if cur.is_player or not self._dungeon_bypass(enc):
                raise permission_denied("it's not your turn", user_id=user_id)

        self._advance(enc, cur)
        self._commit(enc, "next turn", "active")
        return enc

    def _advance(self, enc: Encounter, outgoing: Combatant) -> None:
        prev_round = enc.round
        self._publish(
            EventType.ON_TURN_END,
            actor=self._entity(outgoing, "next turn"),
            **{ContextKey.ENCOUNTER_ID: enc.id, ContextKey.ROUND: enc.round},
        )
        passed = {ability: True for ability in outgoing.passed_saves}
        outgoing.passed_saves = []
        for cond in self.conditions.process_turn_end(outgoing.id, passed):
            if cond.save_end:
                label = cond.type.value.replace("_", " ")
                enc.add_log_entry(f"{outgoing.name} is no longer {label}")

        enc.advance_turn()
        if enc.status != "active":
            return

        if enc.round != prev_round:
            for cid in enc.turn_order:
                self.conditions.process_round_end(cid)

        incoming = enc.current_combatant()
        if incoming is not None:
            incoming.passed_saves = []
            self.conditions.process_turn_start(incoming.id)
            self._publish_turn_start(enc, incoming)

    def _publish_turn_start(self, enc: Encounter, c: Combatant) -> None:
        self._publish(
            EventType.ON_TURN_START,
            actor=self._entity(c, "turn start"),
            **{
                ContextKey.TURN_COUNT: enc.turn,
                ContextKey.ROUND: enc.round,
                ContextKey.NUM_COMBATANTS: len(enc.turn_order),
                ContextKey.ENCOUNTER_ID: enc.id,
            },
        )

    def end_encounter(self, encounter_id: str, user_id: str) -> Encounter:
        enc = self._get(encounter_id, "end encounter")
        if user_id != enc.created_by:
            raise permission_denied("only the encounter creator can end it", user_id=user_id)
        status_before = enc.status
        if not enc.end():
            raise invalid_argument("encounter has already ended", encounter_id=enc.id)
        enc.add_log_entry("The encounter was ended by the DM")
        self._commit(enc, "end encounter", status_before)
        return enc

    # ------------------------------------------------------------------
    # attacks
    # ------------------------------------------------------------------

    def _resolve_profile(
        self, attacker: Combatant, attacker_char: Optional[Character], action_index: int
    ) -> AttackProfile:
        if attacker_char is not None:
            return attacker_char.attack_profile()
        if attacker.is_monster:
            action = attacker.action_at(action_index)
            if action is not None:
                return AttackProfile(
                    name=action.name,
                    to_hit_bonus=action.attack_bonus,
                    damage=list(action.damage),
                    weapon_key=action.name.lower().replace(" ", "_"),
                )
        return unarmed_strike()

    def perform_attack(self, cmd: Attack) -> AttackResult:
        op = "perform attack"
        enc = self._get(cmd.encounter_id, op)
        validate_attack(enc, cmd.attacker_id, cmd.target_id).raise_for_errors()
        attacker = enc.combatants[cmd.attacker_id]
        target = enc.combatants[cmd.target_id]

        cur = enc.current_combatant()
        if (cur is None or cur.id != attacker.id) and not self._dungeon_bypass(enc):
            raise permission_denied("it's not this combatant's turn", attacker_id=attacker.id)

        attacker_char = self._character_of(attacker, op)
        target_char = self._character_of(target, op)
        actor = entity_for(attacker, attacker_char)
        victim = entity_for(target, target_char)
        profile = self._resolve_profile(attacker, attacker_char, cmd.action_index)

        base: Dict[str, ContextValue] = {
            ContextKey.ENCOUNTER_ID: enc.id,
            ContextKey.USER_ID: cmd.user_id,
            ContextKey.TARGET_ID: target.id,
            ContextKey.TARGET_AC: target.ac,
            ContextKey.WEAPON: profile.name,
            ContextKey.WEAPON_KEY: profile.weapon_key,
            ContextKey.WEAPON_TYPE: profile.weapon_type,
            ContextKey.ATTACK_TYPE: profile.weapon_type,
        }
        result = AttackResult(
            attacker_id=attacker.id,
            attacker_name=attacker.name,
            target_id=target.id,
            target_name=target.name,
            weapon_name=profile.name,
            target_ac=target.ac,
            target_new_hp=target.current_hp,
            damage_type=profile.damage_type,
        )

        # 1. before the roll: handlers may adjust the bonus, grant (dis)advantage or cancel
        ev = self._publish(
            EventType.BEFORE_ATTACK_ROLL,
            actor,
            victim,
            **base,
            **{ContextKey.ATTACK_BONUS: profile.to_hit_bonus},
        )
        bonus = ev.context.get_int(ContextKey.ATTACK_BONUS)
        attack_bonus = bonus if bonus is not None else profile.to_hit_bonus
        if ev.cancelled:
            result.cancelled = True
            result.attack_bonus = attack_bonus
            result.log_entry = f"{attacker.name}'s attack on {target.name} was prevented"
            enc.add_log_entry(result.log_entry)
            self._commit(enc, op, "active")
            return result

        mocked = self.conditions.has_condition(attacker.id, ConditionType.DISADVANTAGE_NEXT_ATTACK)
        adv = combine_adv(
            attack_adv_state(
                self.conditions.get_active_effects(attacker.id),
                self.conditions.get_active_effects(target.id),
                extra_disadvantage=mocked,
            ),
            "advantage" if ev.context.get_bool(ContextKey.HAS_ADVANTAGE) else "normal",
            "disadvantage" if ev.context.get_bool(ContextKey.HAS_DISADVANTAGE) else "normal",
        )
        if mocked:
            self.conditions.remove_condition_by_type(
                attacker.id, ConditionType.DISADVANTAGE_NEXT_ATTACK
            )

        # 2. the roll
        with _dependency(op):
            d20 = roll_d20(self.roller, attack_bonus, adv)
        ev = self._publish(
            EventType.ON_ATTACK_ROLL,
            actor,
            victim,
            **base,
            **{
                ContextKey.ATTACK_ROLL: d20.nat,
                ContextKey.ATTACK_BONUS: attack_bonus,
                ContextKey.TOTAL_ATTACK: d20.total,
            },
        )
        v = ev.context.get_int(ContextKey.ATTACK_BONUS)
        attack_bonus = v if v is not None else attack_bonus
        v = ev.context.get_int(ContextKey.TOTAL_ATTACK)
        total = v if v is not None else d20.total

        # 3. hit determination; a natural 20 always crits
        critical = d20.is_critical
        hit = critical or total >= target.ac
        ev = self._publish(
            EventType.AFTER_ATTACK_ROLL,
            actor,
            victim,
            **base,
            **{
                ContextKey.ATTACK_ROLL: d20.nat,
                ContextKey.TOTAL_ATTACK: total,
                ContextKey.HIT: hit,
                ContextKey.CRITICAL: critical,
            },
        )
        # a re-roll (Lucky) may swap the d20 here
        v = ev.context.get_int(ContextKey.ATTACK_ROLL)
        nat = v if v is not None else d20.nat
        v = ev.context.get_int(ContextKey.TOTAL_ATTACK)
        total = v if v is not None else total
        b = ev.context.get_bool(ContextKey.CRITICAL)
        critical = b if b is not None else critical
        b = ev.context.get_bool(ContextKey.HIT)
        hit = (b if b is not None else hit) or critical

        result.attack_roll = nat
        result.attack_bonus = attack_bonus
        result.total_attack = total
        result.adv_state = d20.adv_state
        result.hit = hit
        result.critical = critical

        outcome: Optional[DamageOutcome] = None
        droll = None

        def narrate(_: Combatant, defeated: bool) -> str:
            return format_attack_log(
                attacker=attacker.name,
                target=target.name,
                profile=profile,
                nat=result.attack_roll,
                bonus=attack_bonus,
                total=total,
                target_ac=target.ac,
                hit=hit,
                critical=critical,
                damage=result.damage,
                damage_roll=droll,
                defeated=defeated,
            )

        if hit:
            # 4. damage, re-rolling dice on a crit
            with _dependency(op):
                droll = roll_damage(self.roller, profile.damage, critical)
            ev = self._publish(
                EventType.ON_DAMAGE_ROLL,
                actor,
                victim,
                **base,
                **{
                    ContextKey.DAMAGE: droll.total,
                    ContextKey.DAMAGE_TYPE: profile.damage_type,
                    ContextKey.IS_CRITICAL: critical,
                },
            )
            v = ev.context.get_int(ContextKey.DAMAGE)
            damage = max(0, v if v is not None else droll.total)

            modifier: Optional[str] = None
            if target_char is not None:
                damage, modifier = target_char.adjust_damage(damage, profile.damage_type)
            damage, by_effect = adjust_for_effects(
                damage, profile.damage_type, self.conditions.get_active_effects(target.id)
            )
            modifier = by_effect or modifier

            ev = self._publish(
                EventType.BEFORE_TAKE_DAMAGE,
                actor,
                victim,
                **base,
                **{ContextKey.DAMAGE: damage, ContextKey.DAMAGE_TYPE: profile.damage_type},
            )
            v = ev.context.get_int(ContextKey.DAMAGE)
            damage = 0 if ev.cancelled else max(0, v if v is not None else damage)

            # 5. apply; the attack line stands in for the damage lines
            result.damage = damage
            result.damage_rolls = list(droll.rolls)
            result.damage_bonus = droll.bonus
            result.damage_dice = droll.dice
            result.damage_modifier = modifier
            outcome = enc.apply_damage(target.id, damage, narrate)
            self.conditions.process_damage(target.id, damage)
            self._publish(
                EventType.AFTER_DAMAGE_ROLL,
                actor,
                victim,
                **base,
                **{
                    ContextKey.DAMAGE: damage,
                    ContextKey.IS_CRITICAL: critical,
                    ContextKey.TARGET_DEFEATED: bool(outcome and outcome.defeated),
                },
            )

            if outcome is not None:
                result.target_defeated = outcome.defeated
                result.target_new_hp = outcome.hp_after
                result.combat_ended = outcome.combat_ended
                result.players_won = outcome.players_won
        else:
            enc.add_log_entry(narrate(target, False))

        # 6. log and state persist together
        result.log_entry = narrate(target, result.target_defeated)
        self._commit(enc, op, "active")
        if hit:
            self._mirror_hp(enc, target.id, op)

        logger.debug(
            "%s attacks %s: total=%d ac=%d hit=%s crit=%s dmg=%d",
            attacker.name, target.name, total, target.ac, hit, critical, result.damage,
        )
        return result

    def process_monster_turn(self, encounter_id: str, monster_id: str) -> AttackResult:
        enc = self._get(encounter_id, "process monster turn")
        monster = self._combatant(enc, monster_id)
        if not monster.is_monster:
            raise invalid_argument("combatant is not a monster", combatant_id=monster_id)

        target = next(
            (c for c in enc.combatants.values() if c.is_player and c.is_active), None
        )
        if target is None:
            raise invalid_argument("no valid targets for monster", combatant_id=monster_id)

        return self.perform_attack(
            Attack(
                encounter_id=encounter_id,
                attacker_id=monster_id,
                target_id=target.id,
                user_id=enc.created_by,
                action_index=0 if monster.actions else -1,
            )
        )

    def process_all_monster_turns(self, encounter_id: str) -> List[AttackResult]:
        """Run consecutive monster turns until a non-monster is up or combat ends."""
        results: List[AttackResult] = []
        enc = self._get(encounter_id, "process monster turns")

        for _ in range(len(enc.turn_order)):
            cur = enc.current_combatant()
            if enc.status != "active" or cur is None or not cur.is_monster or not cur.is_active:
                break

            try:
                results.append(self.process_monster_turn(encounter_id, cur.id))
            except EngineError as exc:
                logger.warning("monster %s could not act: %s", cur.id, exc)

            enc = self._get(encounter_id, "process monster turns")
            if enc.status != "active":
                break
            self.next_turn(encounter_id, enc.created_by)
            enc = self._get(encounter_id, "process monster turns")

        return results

    def execute_attack_with_target(self, cmd: ExecuteAttack) -> ExecuteAttackResult:
        enc = self._get(cmd.encounter_id, "execute attack")
        validate_active(enc).raise_for_errors()

        cur = enc.current_combatant()
        attacker = enc.combatant_for_player(cmd.user_id)
        if attacker is None or not attacker.is_active:
            attacker = cur
        if attacker is None:
            raise invalid_argument("no combatant can attack", user_id=cmd.user_id)
        had_turn = cur is not None and cur.id == attacker.id

        first = self.perform_attack(
            Attack(
                encounter_id=cmd.encounter_id,
                attacker_id=attacker.id,
                target_id=cmd.target_id,
                user_id=cmd.user_id,
                action_index=0,
            )
        )

        monster_attacks: List[AttackResult] = []
        if not first.combat_ended and cmd.auto_advance and had_turn:
            self.next_turn(cmd.encounter_id, cmd.user_id)
            monster_attacks = self.process_all_monster_turns(cmd.encounter_id)

        enc = self._get(cmd.encounter_id, "execute attack")
        now = enc.current_combatant()
        return ExecuteAttackResult(
            player_attack=first,
            monster_attacks=monster_attacks,
            current_combatant_id=now.id if now else None,
            current_combatant_name=now.name if now else None,
            is_player_turn=bool(now and now.is_player),
            combat_ended=enc.status == "completed",
            players_won=bool(enc.players_won),
        )

    # ------------------------------------------------------------------
    # hit points
    # ------------------------------------------------------------------

    def apply_damage(
        self,
        encounter_id: str,
        combatant_id: str,
        user_id: str,
        amount: int,
        note: Optional[str] = None,
    ) -> DamageOutcome:
        """``note`` is logged ahead of the damage lines, in the same update."""
        if amount < 0:
            raise invalid_argument("damage cannot be negative", amount=amount)
        enc = self._get(encounter_id, "apply damage")
        self._require_open(enc)
        c = self._combatant(enc, combatant_id)
        self._require_actor(enc, user_id, "deal damage")

        status_before = enc.status
        if note:
            enc.add_log_entry(note)
        outcome = enc.apply_damage(c.id, amount)
        if outcome is None:
            raise not_found("combatant not found", combatant_id=combatant_id)
        self.conditions.process_damage(c.id, amount)

        self._commit(enc, "apply damage", status_before)
        self._mirror_hp(enc, c.id, "apply damage")
        return outcome

    def heal_combatant(
        self, encounter_id: str, combatant_id: str, user_id: str, amount: int
    ) -> int:
        if amount < 0:
            raise invalid_argument("healing cannot be negative", amount=amount)
        enc = self._get(encounter_id, "heal combatant")
        self._require_open(enc)
        c = self._combatant(enc, combatant_id)
        self._require_actor(enc, user_id, "heal")

        healed = enc.heal(c.id, amount) or 0
        enc.add_log_entry(f"{c.name} heals {healed} HP ({c.current_hp}/{c.max_hp})")

        self._commit(enc, "heal combatant", enc.status)
        self._mirror_hp(enc, c.id, "heal combatant")
        return healed

    # ------------------------------------------------------------------
    # conditions, saves and spells
    # ------------------------------------------------------------------

    def apply_condition(self, cmd: ApplyCondition) -> Optional[Condition]:
        enc = self._get(cmd.encounter_id, "apply condition")
        self._require_open(enc)
        c = self._combatant(enc, cmd.combatant_id)
        self._require_dm(enc, cmd.user_id, "apply conditions")

        cond = self.conditions.add_condition(
            c.id,
            cmd.condition_type,
            cmd.source,
            cmd.duration_type,
            cmd.duration,
            applied_by=cmd.user_id,
            save_dc=cmd.save_dc,
            save_type=cmd.save_type,
            save_end=cmd.save_end,
            target=self._entity(c, "apply condition"),
        )
        label = cmd.condition_type.value.replace("_", " ")
        if cond is None:
            enc.add_log_entry(f"{c.name} shrugs off {label}")
        else:
            enc.add_log_entry(f"{c.name} is {label}")

        self._commit(enc, "apply condition", enc.status)
        return cond

    def remove_condition(
        self, encounter_id: str, combatant_id: str, user_id: str, condition_type: ConditionType
    ) -> int:
        enc = self._get(encounter_id, "remove condition")
        self._require_open(enc)
        c = self._combatant(enc, combatant_id)
        self._require_dm(enc, user_id, "remove conditions")

        removed = self.conditions.remove_condition_by_type(c.id, condition_type)
        if removed:
            label = ConditionType(condition_type).value.replace("_", " ")
            enc.add_log_entry(f"{c.name} is no longer {label}")
            self._commit(enc, "remove condition", enc.status)
        return removed

    def roll_saving_throw(self, cmd: RollSave) -> SavingThrowResult:
        op = "roll saving throw"
        enc = self._get(cmd.encounter_id, op)
        validate_active(enc).raise_for_errors()
        c = self._combatant(enc, cmd.combatant_id)
        ability = cmd.ability.upper()

        ch = self._character_of(c, op)
        if ch is not None:
            bonus = ch.modifier(cmd.ability)
        else:
            bonus = ability_modifier(c.abilities.get(cmd.ability, 10))

        effect = self.conditions.get_active_effects(c.id)
        result = SavingThrowResult(combatant_id=c.id, ability=ability, dc=cmd.dc, bonus=bonus)

        if effect.auto_fails(ability):
            result.auto_failed = True
            enc.add_log_entry(f"{c.name} automatically fails the {ability} save (DC {cmd.dc})")
            self._commit(enc, op, enc.status)
            return result

        adv: AdvState = combine_adv(
            "advantage" if effect.saves_with_advantage(ability) else "normal",
            "disadvantage" if effect.saves_with_disadvantage(ability) else "normal",
        )
        with _dependency(op):
            d20 = roll_d20(self.roller, bonus, adv)

        entity = entity_for(c, ch)
        ev = self._publish(
            EventType.ON_SAVING_THROW,
            actor=entity,
            target=entity,
            **{
                ContextKey.ENCOUNTER_ID: enc.id,
                ContextKey.SAVE_TYPE: ability,
                ContextKey.SAVE_ROLL: d20.nat,
                ContextKey.SAVE_BONUS: bonus,
                ContextKey.TOTAL_SAVE: d20.total,
                ContextKey.SAVE_DC: cmd.dc,
            },
        )
        v = ev.context.get_int(ContextKey.SAVE_BONUS)
        result.bonus = v if v is not None else bonus
        v = ev.context.get_int(ContextKey.TOTAL_SAVE)
        result.total = v if v is not None else d20.total
        v = ev.context.get_int(ContextKey.SAVE_ROLL)
        result.roll = v if v is not None else d20.nat
        result.dice = list(d20.dice)
        result.adv_state = d20.adv_state
        result.success = result.total >= cmd.dc

        # save-to-end conditions check this at the holder's turn end
        if result.success and ability not in c.passed_saves:
            c.passed_saves.append(ability)

        verdict = "succeeds" if result.success else "fails"
        enc.add_log_entry(
            f"{c.name} {verdict} a {ability} save: "
            f"d20:{result.roll}{result.bonus:+d}={result.total} vs DC {cmd.dc}"
        )
        self._commit(enc, op, enc.status)
        return result

    def resolve_spell_damage(self, cmd: SpellDamage) -> SpellDamageResult:
        """Roll a damage spell and hand it to whatever listens on ``on_spell_damage``."""
        op = "resolve spell damage"
        enc = self._get(cmd.encounter_id, op)
        validate_active(enc).raise_for_errors()
        validate_combatant(enc, cmd.caster_id, "caster").raise_for_errors()
        validate_combatant(enc, cmd.target_id, "target").raise_for_errors()
        caster = enc.combatants[cmd.caster_id]
        target = enc.combatants[cmd.target_id]

        self._require_actor(enc, cmd.user_id, "cast spells")
        cur = enc.current_combatant()
        if (cur is None or cur.id != caster.id) and not self._dungeon_bypass(enc):
            raise permission_denied("it's not this combatant's turn", caster_id=caster.id)

        with _dependency(op):
            rolled = self.roller.roll(cmd.dice_count, cmd.dice_sides, cmd.bonus)
        cast_line = f"{caster.name} casts {cmd.spell_name} at {target.name}"

        # the damage handler writes the cast line in the same update as the damage
        ev = self._publish(
            EventType.ON_SPELL_DAMAGE,
            actor=self._entity(caster, op),
            target=self._entity(target, op),
            **{
                ContextKey.ENCOUNTER_ID: enc.id,
                ContextKey.USER_ID: cmd.user_id,
                ContextKey.TARGET_ID: target.id,
                ContextKey.SPELL_NAME: cmd.spell_name,
                ContextKey.DAMAGE: max(0, rolled.total),
                ContextKey.DAMAGE_TYPE: cmd.damage_type,
                ContextKey.LOG_ENTRY: cast_line,
            },
        )

        enc = self._get(cmd.encounter_id, op)
        if not ev.context.get_bool(ContextKey.DAMAGE_APPLIED):
            enc.add_log_entry(cast_line)
            self._commit(enc, op, enc.status)

        after = enc.combatants.get(target.id)
        return SpellDamageResult(
            spell_name=cmd.spell_name,
            caster_id=caster.id,
            target_id=target.id,
            damage=max(0, rolled.total),
            rolls=list(rolled.rolls),
            damage_type=cmd.damage_type,
            cancelled=ev.cancelled,
            target_new_hp=after.current_hp if after else None,
        )

    # ------------------------------------------------------------------
    # bookkeeping
    # ------------------------------------------------------------------

    def log_combat_action(self, encounter_id: str, text: str) -> None:
        if not text.strip():
            raise invalid_argument("log entry cannot be empty")
        enc = self._get(encounter_id, "log combat action")
        self._require_open(enc)
        enc.add_log_entry(text.strip())
        self._commit(enc, "log combat action", enc.status)

    def update_message_id(self, encounter_id: str, message_id: str, channel_id: str = "") -> None:
        enc = self._get(encounter_id, "update message id")
        enc.message_id = message_id
        if channel_id:
            enc.channel_id = channel_id
        self._commit(enc, "update message id", enc.status)
