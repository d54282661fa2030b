from __future__ import annotations

from typing import Dict, List

from dndcombat.core.engine.characters import Character
from dndcombat.core.engine.commands import AddMonster
from dndcombat.core.engine.state import Combatant, DamageDice, MonsterAction


def combatant_from_character(
    character: Character, *, combatant_id: str, player_id: str
) -> Combatant:
    """Snapshot a character's HP/AC/initiative onto a fresh player combatant."""
    return Combatant(
        id=combatant_id,
        name=character.name,
        type="player",
        max_hp=character.max_hp,
        current_hp=character.current_hp,
        temp_hp=character.temp_hp,
        ac=character.ac,
        speed=30,
        initiative_bonus=character.modifier("dex"),
        is_active=character.current_hp > 0,
        player_id=player_id,
        character_id=character.id,
    )


def combatant_from_monster(monster: AddMonster, *, combatant_id: str) -> Combatant:
    actions: List[MonsterAction] = [
        MonsterAction(
            name=a.name,
            attack_bonus=a.attack_bonus,
            damage=[
                DamageDice(
                    count=d.count, sides=d.sides, bonus=d.bonus, damage_type=d.damage_type
                )
                for d in a.damage
            ],
            description=a.description,
        )
        for a in monster.actions
    ]
    abilities: Dict[str, int] = {k.lower(): int(v) for k, v in monster.abilities.items()}
    return Combatant(
        id=combatant_id,
        name=monster.name,
        type=monster.kind,
        max_hp=monster.max_hp,
        current_hp=monster.max_hp,
        ac=monster.ac,
        speed=monster.speed,
        initiative_bonus=monster.initiative_bonus,
        monster_ref=monster.monster_ref,
        actions=actions,
        abilities=abilities,
    )
