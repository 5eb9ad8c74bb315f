"""Plain catalog types the pricing engine works on."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator


@dataclass
class Option:
    """One selectable choice within a section."""

    name: str
    price: float = 0.0
    id: str | None = None
    description: str = ""
    sort_order: int = 0
    linked_recipe_id: str | None = None


@dataclass
class Section:
    """A named group of mutually exclusive options."""

    key: str
    label: str
    description: str = ""
    required: bool = False
    options: list[Option] = field(default_factory=list)

    def option_by_name(self, name: str) -> Option | None:
        for opt in self.options:
            if opt.name == name:
                return opt
        return None

    def option_by_id(self, option_id: str) -> Option | None:
        for opt in self.options:
            if opt.id == option_id:
                return opt
        return None


@dataclass(frozen=True)
class DiameterMultiplier:
    section_key: str
    option_id: str
    multiplier: float = 1.0
    base_option_id: str | None = None


@dataclass(frozen=True)
class IngredientLine:
    quantity: float
    unit_price: float
    package_size: float
    indivisible: bool = False


@dataclass(frozen=True)
class RecipeCost:
    id: str
    name: str
    total_cost: float


class SectionRepository:
    """Sections kept in display order and addressed by key."""

    def __init__(self, sections: list[Section] | None = None):
        self._sections: list[Section] = []
        self._index: dict[str, int] = {}
        for section in sections or []:
            self.add(section)

    def add(self, section: Section) -> None:
        if section.key in self._index:
            raise ValueError(f"Duplicate section key: {section.key}")
        self._index[section.key] = len(self._sections)
        self._sections.append(section)

    def get(self, key: str) -> Section | None:
        pos = self._index.get(key)
        return None if pos is None else self._sections[pos]

    def keys(self) -> list[str]:
        return [s.key for s in self._sections]

    def required_keys(self) -> list[str]:
        return [s.key for s in self._sections if s.required]

    def __contains__(self, key) -> bool:
        return key in self._index

    def __iter__(self) -> Iterator[Section]:
        return iter(self._sections)

    def __len__(self) -> int:
        return len(self._sections)
