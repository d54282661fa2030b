from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from dndcombat.core.engine.characters import Character
from dndcombat.core.engine.entities import CharacterEntity, Entity
from dndcombat.core.engine.events import EventBus, Subscription


@dataclass(frozen=True)
class Prerequisites:
    min_level: int = 1
    ability_scores: Dict[str, int] = field(default_factory=dict)

    def met_by(self, character: Character) -> bool:
        if character.level < self.min_level:
            return False
        for ability, minimum in self.ability_scores.items():
            if character.ability_scores.get(ability, 0) < minimum:
                return False
        return True


class Feat:
    key: str = ""
    name: str = ""
    description: str = ""
    prerequisites: Prerequisites = Prerequisites()

    def can_take(self, character: Character) -> bool:
        return self.key not in character.feats and self.prerequisites.met_by(character)

    def apply(self, character: Character) -> None:
        """One-off changes made when the feat is taken."""

    def register_handlers(self, bus: EventBus, character: Character) -> List[Subscription]:
        return []


def is_character(entity: Entity | None, character: Character) -> bool:
    return isinstance(entity, CharacterEntity) and entity.get_id() == character.id
