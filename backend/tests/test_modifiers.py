from dndcombat.core.engine.characters import Character, Weapon
from dndcombat.core.engine.conditions.manager import ConditionService
from dndcombat.core.engine.conditions.types import ConditionType, DurationType
from dndcombat.core.engine.entities import CharacterEntity, MonsterEntity
from dndcombat.core.engine.events import ContextKey, EventBus, EventType, new_event
from dndcombat.core.engine.rules.modifiers import ProficiencyHandler, SpellDamageHandler
from dndcombat.core.engine.state import Combatant

from conftest import fighter


class _RecordingService:
    def __init__(self):
        self.calls = []
        self.notes = []

    def apply_damage(self, encounter_id, combatant_id, user_id, amount, note=None):
        self.calls.append((encounter_id, combatant_id, user_id, amount))
        self.notes.append(note)


def _bus_with_proficiency():
    bus = EventBus()
    ProficiencyHandler().register(bus)
    return bus


def _attack_event(entity, weapon, bonus=3, total=13):
    return new_event(
        EventType.ON_ATTACK_ROLL,
        actor=entity,
        **{ContextKey.WEAPON: weapon, ContextKey.ATTACK_BONUS: bonus, ContextKey.TOTAL_ATTACK: total},
    )


def test_proficient_weapon_adds_bonus():
    bus = _bus_with_proficiency()
    ev = bus.publish(_attack_event(CharacterEntity(fighter()), "Longsword"))
    assert ev.context.get_int(ContextKey.ATTACK_BONUS) == 6
    assert ev.context.get_int(ContextKey.TOTAL_ATTACK) == 16


def test_no_bonus_without_proficiency_or_for_other_weapons():
    bus = _bus_with_proficiency()
    clumsy = fighter().model_copy(update={"weapon_proficiencies": set()})

    assert bus.publish(_attack_event(CharacterEntity(clumsy), "Longsword")).context.get_int(ContextKey.ATTACK_BONUS) == 3
    assert bus.publish(_attack_event(CharacterEntity(fighter()), "Handaxe")).context.get_int(ContextKey.ATTACK_BONUS) == 3
    assert bus.publish(_attack_event(CharacterEntity(fighter()), "Unarmed Strike")).context.get_int(ContextKey.ATTACK_BONUS) == 3


def test_monsters_get_nothing():
    bus = _bus_with_proficiency()
    orc = Combatant(id="m1", name="Orc", type="monster", max_hp=15, current_hp=15, ac=13)
    ev = bus.publish(_attack_event(MonsterEntity(orc), "Greataxe"))
    assert ev.context.get_int(ContextKey.ATTACK_BONUS) == 3


def test_ranged_weapon_proficiency_by_key():
    archer = Character(
        id="c-archer", owner_id="p9", name="Ash", max_hp=9, current_hp=9,
        equipped_weapon=Weapon(key="shortbow", name="Shortbow", category="ranged", damage_type="piercing"),
        weapon_proficiencies={"shortbow"},
    )
    bus = _bus_with_proficiency()
    ev = bus.publish(_attack_event(CharacterEntity(archer), "Shortbow", bonus=0, total=12))
    assert ev.context.get_int(ContextKey.TOTAL_ATTACK) == 14


def test_save_proficiency():
    bus = _bus_with_proficiency()
    hero = CharacterEntity(fighter())

    def save(ability):
        return bus.publish(
            new_event(
                EventType.ON_SAVING_THROW,
                actor=hero,
                target=hero,
                **{ContextKey.SAVE_TYPE: ability, ContextKey.SAVE_BONUS: 2, ContextKey.TOTAL_SAVE: 12},
            )
        )

    assert save("CON").context.get_int(ContextKey.TOTAL_SAVE) == 15
    assert save("WIS").context.get_int(ContextKey.TOTAL_SAVE) == 12


def _spell_event(**ctx):
    base = {
        ContextKey.ENCOUNTER_ID: "e1",
        ContextKey.TARGET_ID: "m1",
        ContextKey.USER_ID: "p1",
        ContextKey.SPELL_NAME: "Fire Bolt",
        ContextKey.DAMAGE: 7,
    }
    base.update(ctx)
    return new_event(EventType.ON_SPELL_DAMAGE, **base)


def test_spell_damage_is_forwarded():
    svc = _RecordingService()
    bus = EventBus()
    SpellDamageHandler(svc).register(bus)

    hit = bus.publish(_spell_event(**{ContextKey.LOG_ENTRY: "Vex casts Fire Bolt at Goblin"}))
    fizzle = bus.publish(_spell_event(**{ContextKey.DAMAGE: 0}))
    bus.publish(_spell_event(**{ContextKey.USER_ID: ""}))

    assert svc.calls == [("e1", "m1", "p1", 7), ("e1", "m1", "system", 7)]
    assert svc.notes == ["Vex casts Fire Bolt at Goblin", None]
    assert hit.context.get_bool(ContextKey.DAMAGE_APPLIED) is True
    assert fizzle.context.get_bool(ContextKey.DAMAGE_APPLIED) is None


def test_cancelled_spell_damage_is_dropped():
    svc = _RecordingService()
    bus = EventBus()
    bus.subscribe(EventType.ON_SPELL_DAMAGE, 1, lambda ev: ev.cancel())
    SpellDamageHandler(svc).register(bus)

    bus.publish(_spell_event())
    assert svc.calls == []


def test_vicious_mockery_imposes_disadvantage():
    svc = _RecordingService()
    bus = EventBus()
    conditions = ConditionService(bus)
    SpellDamageHandler(svc, conditions).register(bus)

    bus.publish(_spell_event(**{ContextKey.SPELL_NAME: "Vicious Mockery", ContextKey.DAMAGE: 3}))

    [cond] = conditions.get_conditions("m1")
    assert cond.type == ConditionType.DISADVANTAGE_NEXT_ATTACK
    assert cond.duration_type == DurationType.END_OF_NEXT_TURN
    assert cond.source == "Vicious Mockery"


def test_entity_adapters_expose_attributes():
    hero = CharacterEntity(fighter(), combatant_id="id-002")
    assert (hero.get_id(), hero.get_type()) == ("c-fighter", "character")
    assert hero.get_attribute("STR") == 16
    assert hero.get_attribute("str_mod") == 3
    assert hero.get_attribute("level") == 5
    assert hero.get_attribute("speed") is None

    orc = MonsterEntity(
        Combatant(id="m1", name="Orc", type="monster", max_hp=15, current_hp=15, ac=13, abilities={"dex": 12})
    )
    assert (orc.get_id(), orc.get_type()) == ("m1", "monster")
    assert orc.get_attribute("dex_mod") == 1
    assert orc.get_attribute("ac") == 13
    assert orc.get_attribute("str") is None
