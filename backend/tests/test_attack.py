import pytest

from dndcombat.core.engine.commands import ApplyCondition, Attack, CreateEncounter, SpellDamage
from dndcombat.core.engine.conditions.types import ConditionType
from dndcombat.core.engine.events import EventType
from dndcombat.core.errors import EngineError, ErrorCode

from conftest import goblin


def _attack(service, enc_id, attacker, target, user="dm", index=0):
    return service.perform_attack(
        Attack(encounter_id=enc_id, attacker_id=attacker, target_id=target, user_id=user, action_index=index)
    )


def _skirmish(service, roller, rolls, third):
    """Brunhild, a goblin and a third monster, started with the given initiative rolls."""
    enc = service.create_encounter(CreateEncounter(session_id="s1", name="Skirmish", created_by="dm"))
    hero = service.add_player(enc.id, "p1", "c-fighter")
    gob = service.add_monster(enc.id, "dm", goblin())
    other = service.add_monster(enc.id, "dm", third)
    roller.set_rolls(rolls)
    service.roll_initiative(enc.id, "dm")
    service.start_encounter(enc.id, "dm")
    return enc.id, hero, gob, other


def test_player_hit_defeats_last_monster(service, roller, battle):
    ended = []
    service.bus.subscribe(EventType.ON_COMBAT_END, 100, ended.append)
    roller.set_rolls([10, 4])

    res = _attack(service, battle.id, battle.hero.id, battle.goblin.id, user="p1")

    assert res.weapon_name == "Longsword"
    assert (res.attack_roll, res.attack_bonus, res.total_attack) == (10, 6, 16)
    assert res.hit and not res.critical
    assert res.damage == 7
    assert res.damage_dice == "1d8"
    assert res.target_defeated and res.combat_ended and res.players_won
    assert res.target_new_hp == 0

    enc = service.get_encounter(battle.id)
    assert enc.status == "completed"
    assert enc.combat_log[-3:] == [
        "Round 1: Combat begins!",
        "Round 1: Brunhild -> Goblin (Longsword) | HIT 7 damage [d20:10+6=16 vs AC:13, dmg:1d8: [4]+3] - defeated",
        "Round 1: Victory! All enemies have been defeated!",
    ]
    assert len(ended) == 1


def test_monster_hit_against_ac_13(service, roller):
    enc_id, hero, gob, bandit = _skirmish(
        service, roller, [2, 18, 1], goblin(name="Bandit", max_hp=11, initiative_bonus=0)
    )
    roller.set_rolls([15, 3])

    res = _attack(service, enc_id, gob.id, bandit.id)

    assert (res.attack_roll, res.attack_bonus, res.total_attack, res.target_ac) == (15, 4, 19, 13)
    assert res.hit
    assert res.damage == 5
    assert res.target_new_hp == 6
    assert res.log_entry == "Goblin -> Bandit (Scimitar) | HIT 5 damage [d20:15+4=19 vs AC:13, dmg:1d6: [3]+2]"


def test_miss_logs_and_rolls_no_damage(service, roller, battle):
    roller.set_rolls([2])
    res = _attack(service, battle.id, battle.hero.id, battle.goblin.id, user="p1")

    assert not res.hit
    assert res.damage == 0
    assert roller.remaining == 0
    enc = service.get_encounter(battle.id)
    assert enc.combatants[battle.goblin.id].current_hp == 7
    assert enc.combat_log[-1] == "Round 1: Brunhild -> Goblin (Longsword) | MISS [d20:2+6=8 vs AC:13]"


@pytest.mark.parametrize("index", [-1, 1, 7])
def test_bad_action_index_falls_back_to_unarmed(service, roller, battle, characters, index):
    service.next_turn(battle.id, "p1")
    roller.set_rolls([19, 3])

    res = _attack(service, battle.id, battle.goblin.id, battle.hero.id, index=index)

    assert res.weapon_name == "Unarmed Strike"
    assert res.attack_bonus == 0
    assert res.damage == 3
    assert res.damage_dice == "1d4"
    assert res.target_new_hp == 37
    assert characters.get_by_id("c-fighter").current_hp == 37


def test_monster_without_actions_punches(service, roller):
    enc_id, hero, gob, brute = _skirmish(
        service, roller, [2, 1, 18], goblin(name="Brute", initiative_bonus=0, actions=[])
    )
    roller.set_rolls([19, 2])

    res = _attack(service, enc_id, brute.id, hero.id)
    assert res.weapon_name == "Unarmed Strike"
    assert res.damage == 2


def test_critical_doubles_dice_not_bonus(service, roller, battle):
    service.next_turn(battle.id, "p1")
    roller.set_rolls([20, 4, 5])

    res = _attack(service, battle.id, battle.goblin.id, battle.hero.id)

    assert res.critical and res.hit
    assert res.damage_rolls == [4, 5]
    assert res.damage_bonus == 2
    assert res.damage == 11
    assert res.damage_dice == "2d6"
    assert res.log_entry == "Goblin -> Brunhild (Scimitar) | CRIT! 11 damage [d20:20+4=24 vs AC:16, dmg:2d6: [4, 5]+2]"


def test_natural_twenty_hits_any_ac(service, roller):
    enc_id, hero, gob, golem = _skirmish(
        service, roller, [2, 18, 1], goblin(name="Iron Golem", max_hp=60, ac=30, initiative_bonus=0)
    )
    roller.set_rolls([20, 1, 1])

    res = _attack(service, enc_id, gob.id, golem.id)
    assert res.total_attack == 24
    assert res.hit and res.critical
    assert res.damage == 4


def test_petrified_target_grants_advantage_and_resists(service, roller):
    enc_id, hero, gob, bandit = _skirmish(
        service, roller, [2, 18, 1], goblin(name="Bandit", max_hp=11, initiative_bonus=0)
    )
    service.apply_condition(
        ApplyCondition(
            encounter_id=enc_id, combatant_id=bandit.id, user_id="dm", condition_type=ConditionType.PETRIFIED
        )
    )
    roller.set_rolls([8, 15, 4])

    res = _attack(service, enc_id, gob.id, bandit.id)

    assert res.adv_state == "advantage"
    assert res.attack_roll == 15
    assert res.damage == 3
    assert res.damage_modifier == "resistant"


def test_character_resistance_halves_damage(service, roller, battle, characters):
    ch = characters.get_by_id("c-fighter")
    ch.damage_resistances = {"slashing"}
    characters.save(ch)
    service.next_turn(battle.id, "p1")
    roller.set_rolls([17, 5])

    res = _attack(service, battle.id, battle.goblin.id, battle.hero.id)
    assert res.damage == 3
    assert res.damage_modifier == "resistant"
    assert res.target_new_hp == 37


def test_cancelled_attack_rolls_nothing(service, roller, battle):
    service.bus.subscribe(EventType.BEFORE_ATTACK_ROLL, 1, lambda ev: ev.cancel())
    roller.set_rolls([10, 4])

    res = _attack(service, battle.id, battle.hero.id, battle.goblin.id, user="p1")

    assert res.cancelled and not res.hit
    assert roller.remaining == 2
    assert service.get_encounter(battle.id).combat_log[-1] == "Round 1: Brunhild's attack on Goblin was prevented"


def test_only_current_combatant_may_attack(service, battle):
    with pytest.raises(EngineError) as exc:
        _attack(service, battle.id, battle.goblin.id, battle.hero.id)
    assert exc.value.code == ErrorCode.PERMISSION_DENIED


def test_attack_validation(service, roller, battle):
    with pytest.raises(EngineError) as exc:
        _attack(service, battle.id, battle.hero.id, "ghost", user="p1")
    assert exc.value.code == ErrorCode.NOT_FOUND

    pending = service.create_encounter(CreateEncounter(session_id="crawl", name="Later", created_by="dm"))
    with pytest.raises(EngineError) as exc:
        _attack(service, pending.id, "a", "b")
    assert exc.value.code == ErrorCode.INVALID_ARGUMENT
    assert exc.value.meta["code"] == "ENCOUNTER_NOT_ACTIVE"


def test_attack_on_defeated_target_rejected(service, roller):
    enc_id, hero, gob, bandit = _skirmish(
        service, roller, [2, 18, 1], goblin(name="Bandit", max_hp=11, initiative_bonus=0)
    )
    service.apply_damage(enc_id, bandit.id, "dm", 11)

    with pytest.raises(EngineError) as exc:
        _attack(service, enc_id, gob.id, bandit.id)
    assert exc.value.meta["code"] == "COMBATANT_INACTIVE"


def test_vicious_mockery_then_disadvantaged_attack(service, roller, battle):
    roller.set_rolls([2])
    spell = service.resolve_spell_damage(
        SpellDamage(
            encounter_id=battle.id,
            caster_id=battle.hero.id,
            target_id=battle.goblin.id,
            user_id="p1",
            spell_name="Vicious Mockery",
            dice_sides=4,
            damage_type="psychic",
        )
    )
    assert spell.damage == 2
    assert spell.target_new_hp == 5
    assert service.conditions.has_condition(battle.goblin.id, ConditionType.DISADVANTAGE_NEXT_ATTACK)
    log = service.get_encounter(battle.id).combat_log
    assert log[-2:] == [
        "Round 1: Brunhild casts Vicious Mockery at Goblin",
        "Round 1: Goblin takes 2 damage (5/7 HP)",
    ]

    service.next_turn(battle.id, "p1")
    roller.set_rolls([18, 6])
    res = _attack(service, battle.id, battle.goblin.id, battle.hero.id)

    assert res.adv_state == "disadvantage"
    assert res.attack_roll == 6
    assert not res.hit
    assert not service.conditions.has_condition(battle.goblin.id, ConditionType.DISADVANTAGE_NEXT_ATTACK)
