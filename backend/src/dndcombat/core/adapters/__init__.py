from .mapper import (
    combatant_from_character,
    combatant_from_monster,
)
from .memory import (
    InMemoryCharacterProvider,
    InMemoryEncounterRepository,
    InMemorySessionProvider,
)

__all__ = [
    "InMemoryCharacterProvider",
    "InMemoryEncounterRepository",
    "InMemorySessionProvider",
    "combatant_from_character",
    "combatant_from_monster",
]
