# Central pricing + calculation shared by the storefront and the admin portal

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from order.catalog import DiameterMultiplier, IngredientLine, Option, SectionRepository
from order.sections import reconcile_section_key

DEFAULT_MULTIPLIER = 1.0

_SIZE_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def round_half_up(value: float, places: int = 2) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


# --- Recipe costs ------------------------------------------------------------
def ingredient_cost(line: IngredientLine) -> float:
    pkg = line.package_size if line.package_size and line.package_size > 0 else 1
    price = float(line.unit_price or 0)
    qty = float(line.quantity or 0)
    if line.indivisible:
        # whole packages only
        packages = math.ceil(Decimal(repr(qty)) / Decimal(repr(float(pkg))))
        return round_half_up(packages * price)
    return round_half_up(price * qty / pkg)


def recipe_total_cost(lines: Iterable[IngredientLine]) -> float:
    # Each line is rounded before summing and the sum is rounded again.
    return round_half_up(sum(ingredient_cost(line) for line in lines))


# --- Diameter multipliers ----------------------------------------------------
def parse_size(name: str | None) -> float | None:
    """Leading number of an option name ("26 cm" -> 26.0)."""
    match = _SIZE_RE.match(name or "")
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def area_multipliers(options: Iterable[Option], base_option_id: str) -> dict[str, float]:
    """Scale factors relative to the base size: (size / base) ** 2, one decimal."""
    opts = [o for o in options if o.id]
    base = next((o for o in opts if o.id == base_option_id), None)
    base_size = parse_size(base.name) if base else None

    result = {}
    for opt in opts:
        size = parse_size(opt.name)
        if size is None or not base_size:
            result[opt.id] = DEFAULT_MULTIPLIER
        else:
            result[opt.id] = round_half_up((size / base_size) ** 2, 1)
    return result


@dataclass
class MultiplierIndex:
    """Lookup tables over the diameter multiplier snapshot."""

    by_key: dict[str, float] = field(default_factory=dict)
    by_option: dict[str, float] = field(default_factory=dict)
    base_by_section: dict[str, str | None] = field(default_factory=dict)
    managed_sections: list[str] = field(default_factory=list)

    @classmethod
    def build(cls, rows: Iterable[DiameterMultiplier], known_keys: Iterable[str] | None = None) -> "MultiplierIndex":
        known = list(known_keys) if known_keys is not None else None
        index = cls()
        for row in rows:
            section = row.section_key
            if known:
                section = reconcile_section_key(section, known)
            value = float(row.multiplier)
            index.by_key[f"{section}:{row.option_id}"] = value
            index.by_option[row.option_id] = value
            if section not in index.base_by_section or row.base_option_id:
                index.base_by_section[section] = row.base_option_id
            if section not in index.managed_sections:
                index.managed_sections.append(section)
        return index

    def is_managed(self, section_key: str) -> bool:
        return section_key in self.managed_sections

    def lookup(self, section_key: str, option_id: str) -> float | None:
        exact = self.by_key.get(f"{section_key}:{option_id}")
        if exact is not None:
            return exact
        suffix = f":{option_id}"
        for key, value in self.by_key.items():
            if key.endswith(suffix):
                return value
        return self.by_option.get(option_id)


def is_linked(option: Option, recipe_names: Iterable[str] = ()) -> bool:
    # Name match is the legacy link: any option named like a recipe counts.
    return bool(option.linked_recipe_id) or option.name in recipe_names


def _selected_option_id(section_key, item, sections: SectionRepository, current_selection) -> str | None:
    if item is not None:
        name = (item.dynamic_selections or {}).get(section_key)
        section = sections.get(section_key)
        if name and section is not None:
            opt = section.option_by_name(name)
            if opt is not None and opt.id:
                return opt.id
    if current_selection:
        return current_selection.get(section_key) or None
    return None


def resolve_multiplier(
    target_section_key: str,
    item,
    sections: SectionRepository,
    index: MultiplierIndex,
    current_selection: dict[str, str] | None = None,
) -> float:
    """First managed section (other than the target) with a resolvable multiplier wins."""
    for managed in index.managed_sections:
        if managed == target_section_key:
            continue
        option_id = _selected_option_id(managed, item, sections, current_selection)
        if not option_id:
            continue
        value = index.lookup(managed, option_id)
        if value is not None:
            return value
    return DEFAULT_MULTIPLIER


# --- Line items --------------------------------------------------------------
@dataclass(frozen=True)
class PricedSelection:
    section_key: str
    label: str
    option_name: str
    base_price: float
    multiplier: float
    price: float


def line_breakdown(
    item,
    sections: SectionRepository,
    index: MultiplierIndex,
    recipe_names: Iterable[str] = (),
    current_selection: dict[str, str] | None = None,
) -> list[PricedSelection]:
    names = frozenset(recipe_names)
    rows = []
    for section_key, option_name in (item.dynamic_selections or {}).items():
        section = sections.get(section_key)
        if section is None:
            continue
        opt = section.option_by_name(option_name)
        if opt is None:
            continue
        mult = DEFAULT_MULTIPLIER
        if is_linked(opt, names):
            mult = resolve_multiplier(section_key, item, sections, index, current_selection)
        rows.append(PricedSelection(
            section_key=section_key,
            label=section.label,
            option_name=opt.name,
            base_price=opt.price,
            multiplier=mult,
            price=opt.price * mult,
        ))
    return rows


def compute_line_total(
    item,
    sections: SectionRepository,
    index: MultiplierIndex,
    recipe_names: Iterable[str] = (),
    current_selection: dict[str, str] | None = None,
) -> float:
    """Unit price of one line item; not rounded."""
    rows = line_breakdown(item, sections, index, recipe_names, current_selection)
    return sum(r.price for r in rows) + float(item.reward or 0)
