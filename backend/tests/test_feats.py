import pytest

from dndcombat.core.engine.characters import Character, Weapon
from dndcombat.core.engine.commands import ApplyCondition, Attack, CreateEncounter, RollSave
from dndcombat.core.engine.conditions.types import ConditionType
from dndcombat.core.engine.dice import ScriptedRoller
from dndcombat.core.engine.entities import CharacterEntity
from dndcombat.core.engine.events import ContextKey, EventBus, EventType, new_event
from dndcombat.core.engine.feats.base import Feat, Prerequisites
from dndcombat.core.engine.feats.combat_feats import Tough
from dndcombat.core.engine.feats.registry import FeatRegistry, default_feat_registry

from conftest import fighter, goblin


def _barbarian(**overrides) -> Character:
    data = dict(
        id="c-barb",
        owner_id="p3",
        name="Grog",
        level=4,
        max_hp=45,
        current_hp=45,
        ability_scores={"str": 18, "dex": 12, "con": 16, "int": 8, "wis": 10, "cha": 10},
        equipped_weapon=Weapon(
            key="greatsword", name="Greatsword", dice_count=2, dice_sides=6,
            properties=["heavy", "two-handed"],
        ),
        weapon_proficiencies={"melee"},
        feats=["great_weapon_master"],
    )
    data.update(overrides)
    return Character(**data)


def test_default_registry_catalog():
    reg = default_feat_registry()
    assert [f.key for f in reg.list()] == ["alert", "great_weapon_master", "lucky", "sharpshooter", "tough"]
    assert reg.get("savage_attacker") is None

    with pytest.raises(ValueError):
        reg.register(Tough())

    class Nameless(Feat):
        pass

    with pytest.raises(ValueError):
        reg.register(Nameless())


def test_available_and_apply():
    reg = FeatRegistry()

    class Heavy(Feat):
        key = "heavy_armor_master"
        name = "Heavy Armor Master"
        prerequisites = Prerequisites(min_level=4, ability_scores={"str": 13})

    reg.register(Heavy())
    reg.register(Tough())

    weakling = _barbarian(level=2, feats=[])
    assert [f.key for f in reg.available_for(weakling)] == ["tough"]

    grog = _barbarian(feats=[])
    reg.apply_feat(grog, "tough")
    assert (grog.max_hp, grog.current_hp) == (53, 53)
    assert "tough" in grog.feats
    with pytest.raises(ValueError):
        reg.apply_feat(grog, "tough")


def test_great_weapon_master_trades_accuracy_for_damage():
    bus = EventBus()
    grog = _barbarian()
    reg = default_feat_registry()
    reg.register_handlers(grog, bus)
    me = CharacterEntity(grog)
    granted = []
    bus.subscribe(EventType.BONUS_ACTION_GRANTED, 100, granted.append)

    ev = bus.publish(
        new_event(EventType.BEFORE_ATTACK_ROLL, actor=me, **{ContextKey.WEAPON: "Greatsword", ContextKey.ATTACK_BONUS: 7})
    )
    assert ev.context.get_int(ContextKey.ATTACK_BONUS) == 2

    ev = bus.publish(new_event(EventType.ON_DAMAGE_ROLL, actor=me, **{ContextKey.DAMAGE: 11}))
    assert ev.context.get_int(ContextKey.DAMAGE) == 21

    # power attack is spent after one damage roll
    ev = bus.publish(new_event(EventType.ON_DAMAGE_ROLL, actor=me, **{ContextKey.DAMAGE: 11}))
    assert ev.context.get_int(ContextKey.DAMAGE) == 11

    bus.publish(new_event(EventType.AFTER_DAMAGE_ROLL, actor=me, **{ContextKey.IS_CRITICAL: False, ContextKey.TARGET_DEFEATED: False}))
    assert granted == []
    bus.publish(new_event(EventType.AFTER_DAMAGE_ROLL, actor=me, **{ContextKey.IS_CRITICAL: True}))
    assert len(granted) == 1
    assert granted[0].context.get_str(ContextKey.SOURCE) == "Great Weapon Master"


def test_great_weapon_master_needs_heavy_weapon():
    bus = EventBus()
    grog = _barbarian(equipped_weapon=Weapon(key="shortsword", name="Shortsword", properties=["finesse", "light"]))
    default_feat_registry().register_handlers(grog, bus)

    ev = bus.publish(
        new_event(EventType.BEFORE_ATTACK_ROLL, actor=CharacterEntity(grog), **{ContextKey.WEAPON: "Shortsword", ContextKey.ATTACK_BONUS: 6})
    )
    assert ev.context.get_int(ContextKey.ATTACK_BONUS) == 6


def test_sharpshooter_only_for_ranged():
    bus = EventBus()
    ash = _barbarian(id="c-ash", feats=["sharpshooter"])
    default_feat_registry().register_handlers(ash, bus)
    me = CharacterEntity(ash)

    melee = bus.publish(new_event(EventType.BEFORE_ATTACK_ROLL, actor=me, **{ContextKey.WEAPON_TYPE: "melee", ContextKey.ATTACK_BONUS: 5}))
    ranged = bus.publish(new_event(EventType.BEFORE_ATTACK_ROLL, actor=me, **{ContextKey.WEAPON_TYPE: "ranged", ContextKey.ATTACK_BONUS: 5}))
    assert melee.context.get_int(ContextKey.ATTACK_BONUS) == 5
    assert ranged.context.get_int(ContextKey.ATTACK_BONUS) == 0


def test_register_handlers_replaces_previous_subscriptions():
    bus = EventBus()
    reg = default_feat_registry()
    grog = _barbarian()

    reg.register_handlers(grog, bus)
    reg.register_handlers(grog, bus)
    assert bus.handler_count(EventType.BEFORE_ATTACK_ROLL) == 1

    reg.unregister_handlers(grog.id, bus)
    assert bus.handler_count(EventType.BEFORE_ATTACK_ROLL) == 0


def test_alert_adds_five_to_initiative(service, roller):
    enc = service.create_encounter(CreateEncounter(session_id="s1", name="Alarm", created_by="dm"))
    vex = service.add_player(enc.id, "p2", "c-scout")
    service.add_monster(enc.id, "dm", goblin())

    roller.set_rolls([4, 15])
    enc = service.roll_initiative(enc.id, "dm")

    # 4 + DEX 3 + Alert 5; the goblin still leads with 15 + 2
    assert enc.combatants[vex.id].initiative == 12
    assert enc.turn_order[1] == vex.id


def test_alert_cannot_be_surprised(service):
    enc = service.create_encounter(CreateEncounter(session_id="s1", name="Alarm", created_by="dm"))
    vex = service.add_player(enc.id, "p2", "c-scout")

    cond = service.apply_condition(
        ApplyCondition(
            encounter_id=enc.id, combatant_id=vex.id, user_id="dm", condition_type=ConditionType.SURPRISED
        )
    )
    assert cond is None
    assert not service.conditions.has_condition(vex.id, ConditionType.SURPRISED)
    assert service.get_encounter(enc.id).combat_log[-1] == "Vex shrugs off surprised"

    # other conditions still land
    assert service.apply_condition(
        ApplyCondition(
            encounter_id=enc.id, combatant_id=vex.id, user_id="dm", condition_type=ConditionType.PRONE
        )
    ) is not None


def _lucky_bus(*rolls):
    bus = EventBus()
    kit = _barbarian(id="c-kit", name="Kit", feats=["lucky"])
    default_feat_registry(ScriptedRoller(list(rolls))).register_handlers(kit, bus)
    return bus, kit


def _missed(kit, nat, total):
    return new_event(
        EventType.AFTER_ATTACK_ROLL,
        actor=CharacterEntity(kit),
        **{
            ContextKey.ATTACK_ROLL: nat,
            ContextKey.TOTAL_ATTACK: total,
            ContextKey.TARGET_AC: 15,
            ContextKey.HIT: False,
            ContextKey.CRITICAL: False,
        },
    )


def test_lucky_rerolls_a_miss_and_keeps_the_better_die():
    bus, kit = _lucky_bus(14, 2)
    assert kit.resources["luck_points"].current == 3

    ev = bus.publish(_missed(kit, 4, 10))
    assert ev.context.get_int(ContextKey.ATTACK_ROLL) == 14
    assert ev.context.get_int(ContextKey.TOTAL_ATTACK) == 20
    assert ev.context.get_bool(ContextKey.HIT) is True

    # a worse second die changes nothing but still costs the point
    ev = bus.publish(_missed(kit, 4, 10))
    assert ev.context.get_int(ContextKey.ATTACK_ROLL) == 4
    assert ev.context.get_bool(ContextKey.HIT) is False
    assert kit.resources["luck_points"].current == 1


def test_lucky_runs_out_and_long_rest_refills():
    bus, kit = _lucky_bus(20, 1, 1)
    ev = bus.publish(_missed(kit, 2, 8))
    assert ev.context.get_bool(ContextKey.CRITICAL) is True
    assert ev.context.get_bool(ContextKey.HIT) is True
    bus.publish(_missed(kit, 2, 8))
    bus.publish(_missed(kit, 2, 8))
    assert kit.resources["luck_points"].current == 0

    # out of luck: no die is rolled
    ev = bus.publish(_missed(kit, 2, 8))
    assert ev.context.get_int(ContextKey.ATTACK_ROLL) == 2

    kit.long_rest()
    assert kit.resources["luck_points"].current == 3


def test_lucky_rerolls_failed_saves_only():
    bus, kit = _lucky_bus(17)
    me = CharacterEntity(kit)

    passed = bus.publish(
        new_event(EventType.ON_SAVING_THROW, actor=me, **{ContextKey.SAVE_ROLL: 12, ContextKey.TOTAL_SAVE: 15, ContextKey.SAVE_DC: 13})
    )
    assert passed.context.get_int(ContextKey.SAVE_ROLL) == 12
    assert kit.resources["luck_points"].current == 3

    failed = bus.publish(
        new_event(EventType.ON_SAVING_THROW, actor=me, **{ContextKey.SAVE_ROLL: 5, ContextKey.TOTAL_SAVE: 8, ContextKey.SAVE_DC: 13})
    )
    assert failed.context.get_int(ContextKey.SAVE_ROLL) == 17
    assert failed.context.get_int(ContextKey.TOTAL_SAVE) == 20


def test_lucky_in_a_real_fight(service, roller, characters):
    characters.save(fighter().model_copy(update={"feats": ["lucky"]}))
    enc = service.create_encounter(CreateEncounter(session_id="s1", name="Long Odds", created_by="dm"))
    hero = service.add_player(enc.id, "p1", "c-fighter")
    gob = service.add_monster(enc.id, "dm", goblin(name="Goblin Boss", max_hp=20))
    roller.set_rolls([15, 5])
    service.roll_initiative(enc.id, "dm")
    service.start_encounter(enc.id, "dm")

    # 3 + 6 misses AC 13; the lucky 18 + 6 hits
    roller.set_rolls([3, 18, 4])
    res = service.perform_attack(Attack(encounter_id=enc.id, attacker_id=hero.id, target_id=gob.id, user_id="p1"))
    assert (res.attack_roll, res.total_attack) == (18, 24)
    assert res.hit and res.damage == 7
    assert "d20:18+6=24" in res.log_entry

    roller.set_rolls([2, 19])
    save = service.roll_saving_throw(RollSave(encounter_id=enc.id, combatant_id=hero.id, ability="wis", dc=12))
    assert (save.roll, save.total) == (19, 19)
    assert save.success
