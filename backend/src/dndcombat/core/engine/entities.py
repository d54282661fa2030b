from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Protocol, Union

from dndcombat.core.engine.characters import Character, ability_modifier
from dndcombat.core.engine.state import Combatant

EntityType = Literal["character", "monster"]


class Entity(Protocol):
    def get_id(self) -> str: ...

    def get_type(self) -> EntityType: ...

    def get_attribute(self, name: str) -> Optional[int]: ...


@dataclass(frozen=True)
class CharacterEntity:
    character: Character
    combatant_id: str = ""

    def get_id(self) -> str:
        return self.character.id

    def get_type(self) -> EntityType:
        return "character"

    def get_attribute(self, name: str) -> Optional[int]:
        key = name.lower()
        if key in self.character.ability_scores:
            return self.character.ability_scores[key]
        if key.endswith("_mod") and key[:-4] in self.character.ability_scores:
            return self.character.modifier(key[:-4])
        if key == "level":
            return self.character.level
        if key == "ac":
            return self.character.ac
        return None


@dataclass(frozen=True)
class MonsterEntity:
    combatant: Combatant

    def get_id(self) -> str:
        return self.combatant.id

    def get_type(self) -> EntityType:
        return "monster"

    def get_attribute(self, name: str) -> Optional[int]:
        key = name.lower()
        if key in self.combatant.abilities:
            return self.combatant.abilities[key]
        if key.endswith("_mod") and key[:-4] in self.combatant.abilities:
            return ability_modifier(self.combatant.abilities[key[:-4]])
        if key == "ac":
            return self.combatant.ac
        return None


AnyEntity = Union[CharacterEntity, MonsterEntity]


def entity_for(combatant: Combatant, character: Optional[Character] = None) -> AnyEntity:
    if character is not None:
        return CharacterEntity(character=character, combatant_id=combatant.id)
    return MonsterEntity(combatant=combatant)
