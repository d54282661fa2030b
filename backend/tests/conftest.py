from __future__ import annotations

import itertools
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dndcombat.api.main import create_app
from dndcombat.core.adapters.memory import (
    InMemoryCharacterProvider,
    InMemoryEncounterRepository,
    InMemorySessionProvider,
)
from dndcombat.core.engine.characters import Character, Weapon
from dndcombat.core.engine.commands import AddMonster, CreateEncounter, DamageDiceIn, MonsterActionIn
from dndcombat.core.engine.dice import ScriptedRoller
from dndcombat.core.engine.factory import build_service
from dndcombat.core.ports import SessionInfo, SessionMember
from dndcombat.db.base import Base
import dndcombat.db.models  # noqa: F401


def fighter() -> Character:
    # level 5: proficiency +3, STR +3, DEX +1
    return Character(
        id="c-fighter",
        owner_id="p1",
        name="Brunhild",
        level=5,
        max_hp=40,
        current_hp=40,
        ac=16,
        ability_scores={"str": 16, "dex": 12, "con": 14, "int": 10, "wis": 10, "cha": 8},
        equipped_weapon=Weapon(
            key="longsword", name="Longsword", dice_count=1, dice_sides=8, damage_type="slashing"
        ),
        weapon_proficiencies={"melee"},
        save_proficiencies={"str", "con"},
    )


def scout() -> Character:
    return Character(
        id="c-scout",
        owner_id="p2",
        name="Vex",
        level=1,
        max_hp=10,
        current_hp=10,
        ac=14,
        ability_scores={"str": 8, "dex": 16, "con": 12, "int": 10, "wis": 12, "cha": 10},
        feats=["alert"],
    )


def goblin(**overrides) -> AddMonster:
    data = dict(
        name="Goblin",
        max_hp=7,
        ac=13,
        initiative_bonus=2,
        abilities={"str": 8, "dex": 14, "con": 10, "int": 10, "wis": 8, "cha": 8},
        actions=[
            MonsterActionIn(
                name="Scimitar",
                attack_bonus=4,
                damage=[DamageDiceIn(count=1, sides=6, bonus=2, damage_type="slashing")],
            )
        ],
    )
    data.update(overrides)
    return AddMonster(**data)


@pytest.fixture()
def roller():
    return ScriptedRoller()


@pytest.fixture()
def characters():
    return InMemoryCharacterProvider([fighter(), scout()])


@pytest.fixture()
def sessions():
    return InMemorySessionProvider(
        [
            SessionInfo(
                id="s1",
                members={
                    "dm": SessionMember(user_id="dm", role="dm"),
                    "p1": SessionMember(user_id="p1"),
                    "p2": SessionMember(user_id="p2"),
                },
            ),
            SessionInfo(id="crawl", metadata={"sessionType": "dungeon"}),
        ]
    )


@pytest.fixture()
def service(characters, sessions, roller):
    # zero-padded ids sort in creation order, so initiative rolls are consumed that way
    seq = itertools.count(1)
    return build_service(
        characters,
        sessions,
        repository=InMemoryEncounterRepository(),
        roller=roller,
        id_factory=lambda: f"id-{next(seq):03d}",
    )


@pytest.fixture()
def battle(service, roller):
    """Brunhild vs one goblin, started, Brunhild to act.

    Initiative: Brunhild 15+1=16, Goblin 5+2=7.
    """
    enc = service.create_encounter(
        CreateEncounter(session_id="s1", name="Goblin Ambush", created_by="dm")
    )
    hero = service.add_player(enc.id, "p1", "c-fighter")
    gob = service.add_monster(enc.id, "dm", goblin())
    roller.set_rolls([15, 5])
    service.roll_initiative(enc.id, "dm")
    service.start_encounter(enc.id, "dm")
    return SimpleNamespace(id=enc.id, hero=hero, goblin=gob)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)


@pytest.fixture()
def TestingSessionLocal(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def client(service):
    with TestClient(create_app(service)) as c:
        yield c
