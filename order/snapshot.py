from __future__ import annotations

# =========================================
# snapshot.py
# Read-only catalog snapshot loaded from the database
# =========================================
# - Probes section_meta once per app for optional columns (older schemas)
# - Rebuilds sections, recipe costs and the multiplier index in one pass
# - SnapshotCache reloads fully after the change feed reports a write
# =========================================

import time
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError

from order.catalog import DiameterMultiplier, IngredientLine, RecipeCost, SectionRepository
from order.models import (
    DiameterMultiplierRow,
    Recipe,
    RecipeIngredient,
    SectionMeta,
    SectionOptionRow,
    db,
)
from order.pricing import MultiplierIndex, recipe_total_cost
from order.sections import OrderingPreferences, SectionOrderStore, reconcile_sections

CATALOG_TABLES = (
    "section_meta",
    "section_options",
    "diameter_multipliers",
    "recipes",
    "recipe_ingredients",
    "ingredients",
)


@dataclass(frozen=True)
class SchemaCapabilities:
    supports_explicit_order: bool = False
    supports_required: bool = False


def probe_capabilities(engine) -> SchemaCapabilities:
    try:
        columns = {c["name"] for c in inspect(engine).get_columns("section_meta")}
    except SQLAlchemyError:
        current_app.logger.warning("section_meta could not be inspected; assuming legacy schema")
        return SchemaCapabilities()
    return SchemaCapabilities(
        supports_explicit_order="sort_order" in columns,
        supports_required="required" in columns,
    )


@dataclass
class CatalogSnapshot:
    sections: SectionRepository = field(default_factory=SectionRepository)
    multipliers: MultiplierIndex = field(default_factory=MultiplierIndex)
    recipes: dict[str, RecipeCost] = field(default_factory=dict)

    @property
    def recipe_names(self) -> frozenset:
        return frozenset(r.name for r in self.recipes.values())


def meta_columns(caps: SchemaCapabilities) -> list:
    cols = [SectionMeta.section, SectionMeta.description]
    if caps.supports_required:
        cols.append(SectionMeta.required)
    if caps.supports_explicit_order:
        cols.append(SectionMeta.sort_order)
    return cols


def load_recipe_costs() -> dict[str, RecipeCost]:
    lines_by_recipe: dict[str, list[IngredientLine]] = {}
    for ri in db.session.scalars(select(RecipeIngredient)):
        ing = ri.ingredient
        if ing is None:
            continue
        lines_by_recipe.setdefault(ri.recipe_id, []).append(IngredientLine(
            quantity=ri.quantity or 0,
            unit_price=ing.price or 0,
            package_size=ing.package_size or 0,
            indivisible=bool(ing.indivisible),
        ))

    costs = {}
    for recipe in db.session.scalars(select(Recipe).order_by(Recipe.created_at.desc())):
        costs[recipe.id] = RecipeCost(
            id=recipe.id,
            name=recipe.name,
            total_cost=recipe_total_cost(lines_by_recipe.get(recipe.id, [])),
        )
    return costs


def load_snapshot(caps: SchemaCapabilities, prefs: OrderingPreferences) -> CatalogSnapshot:
    meta_rows = [row._asdict() for row in db.session.execute(select(*meta_columns(caps)))]

    option_rows = []
    stmt = select(SectionOptionRow).order_by(SectionOptionRow.section, SectionOptionRow.sort_order)
    for opt in db.session.scalars(stmt):
        option_rows.append({
            "id": opt.id,
            "section": opt.section,
            "name": opt.name,
            "price": opt.price,
            "description": opt.description,
            "sort_order": opt.sort_order,
            "linked_recipe_id": opt.linked_recipe_id,
        })

    recipes = load_recipe_costs()

    # Linked options take their price from the recipe
    for row in option_rows:
        recipe = recipes.get(row["linked_recipe_id"]) if row["linked_recipe_id"] else None
        if recipe is not None:
            row["price"] = recipe.total_cost

    sections = reconcile_sections(meta_rows, option_rows, prefs)

    multiplier_rows = [
        DiameterMultiplier(
            section_key=m.section_key,
            option_id=m.option_id,
            multiplier=m.multiplier,
            base_option_id=m.base_option_id,
        )
        for m in db.session.scalars(select(DiameterMultiplierRow).order_by(DiameterMultiplierRow.id))
    ]
    index = MultiplierIndex.build(multiplier_rows, known_keys=sections.keys())

    return CatalogSnapshot(sections=sections, multipliers=index, recipes=recipes)


class SnapshotCache:
    """Last good catalog snapshot for one app; marked stale by the change feed.

    Writes made by another process never reach this feed, so a snapshot older
    than ``max_age`` seconds is reloaded as well (0 disables the age check).
    """

    def __init__(self, order_file: str | None = None, max_age: float = 0):
        self._snapshot: CatalogSnapshot | None = None
        self._stale = True
        self._loaded_at = 0.0
        self._max_age = max_age
        self._caps: SchemaCapabilities | None = None
        self._order_store = SectionOrderStore(order_file) if order_file else None

    @property
    def capabilities(self) -> SchemaCapabilities:
        if self._caps is None:
            self._caps = probe_capabilities(db.engine)
        return self._caps

    @property
    def ordering(self) -> OrderingPreferences:
        return OrderingPreferences(
            supports_explicit_order=self.capabilities.supports_explicit_order,
            store=self._order_store,
        )

    def invalidate(self, tables=None):
        self._stale = True

    def _expired(self) -> bool:
        return bool(self._max_age) and time.monotonic() - self._loaded_at > self._max_age

    def get(self) -> CatalogSnapshot:
        if self._stale or self._snapshot is None or self._expired():
            try:
                self._snapshot = load_snapshot(self.capabilities, self.ordering)
                self._stale = False
                self._loaded_at = time.monotonic()
            except SQLAlchemyError:
                db.session.rollback()
                current_app.logger.exception("Catalog reload failed; keeping previous snapshot")
                if self._snapshot is None:
                    return CatalogSnapshot()
        return self._snapshot


def init_snapshot_cache(app, feed) -> SnapshotCache:
    cache = SnapshotCache(app.config.get("SECTION_ORDER_FILE"), app.config.get("CATALOG_MAX_AGE", 0))
    feed.subscribe(CATALOG_TABLES, cache.invalidate)
    app.extensions["catalog_snapshot"] = cache
    return cache


def get_snapshot_cache() -> SnapshotCache:
    return current_app.extensions["catalog_snapshot"]
