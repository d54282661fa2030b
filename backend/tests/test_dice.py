import pytest

from dndcombat.core.engine.dice import (
    DiceError,
    RandomRoller,
    ScriptedRoller,
    combine_adv,
    format_dice,
    parse_dice,
    roll_d20,
    roll_formula,
)


def test_parse_and_format_dice():
    assert parse_dice("1d8+3") == (1, 8, 3)
    assert parse_dice(" 2d6 - 1 ") == (2, 6, -1)
    assert parse_dice("1d20") == (1, 20, 0)
    assert format_dice(2, 6, 0) == "2d6"
    assert format_dice(1, 8, 3) == "1d8+3"
    assert format_dice(1, 4, -1) == "1d4-1"

    with pytest.raises(DiceError):
        parse_dice("d20")


def test_scripted_roller_hands_out_queue_in_order():
    r = ScriptedRoller([3, 5, 6])
    res = r.roll(2, 6, 1)
    assert res.rolls == [3, 5]
    assert res.total == 9
    assert r.remaining == 1
    assert r.history == [(2, 6)]

    r.add_rolls(2)
    assert roll_formula(r, "2d6").total == 8
    assert r.remaining == 0


def test_scripted_roller_rejects_exhaustion_and_impossible_faces():
    r = ScriptedRoller()
    with pytest.raises(DiceError):
        r.roll(1, 20)

    r.set_rolls([7])
    with pytest.raises(DiceError):
        r.roll(1, 6)


def test_roll_rejects_bad_dice():
    with pytest.raises(DiceError):
        RandomRoller().roll(0, 6)
    with pytest.raises(DiceError):
        RandomRoller().roll(1, 0)


def test_random_roller_seeded_is_reproducible_and_in_range():
    a = [RandomRoller(42).roll(4, 6).rolls for _ in range(3)]
    assert a[0] == a[1] == a[2]

    rolls = RandomRoller(7).roll(200, 20).rolls
    assert min(rolls) >= 1 and max(rolls) <= 20


def test_roll_d20_keeps_high_or_low_die():
    r = ScriptedRoller([4, 17, 4, 17, 11])

    adv = roll_d20(r, 3, "advantage")
    assert (adv.nat, adv.dice, adv.total) == (17, [4, 17], 20)

    dis = roll_d20(r, 3, "disadvantage")
    assert (dis.nat, dis.dice, dis.total) == (4, [4, 17], 7)

    normal = roll_d20(r, -1)
    assert normal.dice == [11] and normal.total == 10
    assert not normal.is_critical


def test_combine_adv_cancels_out():
    assert combine_adv() == "normal"
    assert combine_adv("advantage", "normal") == "advantage"
    assert combine_adv("disadvantage", "disadvantage") == "disadvantage"
    assert combine_adv("advantage", "disadvantage", "advantage") == "normal"
