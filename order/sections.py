"""Merge section metadata and section options into one ordered catalog.

The two relations are maintained independently: a section can exist from its
options alone (before metadata is written) or from metadata alone (before any
option is added). Ordering prefers the explicit ``sort_order`` column, then a
persisted fallback list of keys, then first-seen order.
"""

from __future__ import annotations

import json
import logging
import os
import unicodedata
from dataclasses import dataclass
from typing import Iterable

from order.catalog import Option, Section, SectionRepository

log = logging.getLogger(__name__)

# Default descriptions written by the seeding script; never shown as labels.
PLACEHOLDER_DESCRIPTIONS = frozenset({"spodny popis sekcie"})

FUZZY_KEY_MAX_DISTANCE = 2


def _fold(text: str | None) -> str:
    decomposed = unicodedata.normalize("NFKD", text or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.strip().casefold()


def is_placeholder(description: str | None) -> bool:
    folded = _fold(description)
    return not folded or folded in PLACEHOLDER_DESCRIPTIONS


def key_to_label(key: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in key.split("_"))


def resolve_label(key: str, description: str | None) -> str:
    if is_placeholder(description):
        return key_to_label(key)
    return description.strip()


def slugify_label(label: str) -> str:
    """Key for a new section: lower-case, whitespace to ``_``, other symbols dropped."""
    lowered = "_".join(label.strip().lower().split())
    return "".join(ch for ch in lowered if ch.isascii() and (ch.isalnum() or ch == "_"))


# -------------------- Ordering preferences --------------------
class SectionOrderStore:
    """JSON array of section keys kept in a single file."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> list[str]:
        if not self.path or not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            log.debug("Unreadable section order file %s", self.path)
            return []
        if not isinstance(data, list):
            return []
        return [k for k in data if isinstance(k, str)]

    def save(self, keys: Iterable[str]) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(list(keys), f)


@dataclass
class OrderingPreferences:
    supports_explicit_order: bool = False
    store: SectionOrderStore | None = None

    def fallback_order(self) -> list[str]:
        return self.store.load() if self.store else []

    def remember_order(self, keys: Iterable[str]) -> None:
        if self.store:
            self.store.save(keys)


def resolve_order(keys: list[str], meta_by_key: dict, prefs: OrderingPreferences) -> list[str]:
    """Order ``keys`` (given in first-seen order)."""
    if prefs.supports_explicit_order and keys:
        sort_values = [(meta_by_key.get(k) or {}).get("sort_order") for k in keys]
        if all(v is not None for v in sort_values):
            positions = sorted(range(len(keys)), key=lambda i: (sort_values[i], i))
            return [keys[i] for i in positions]

    saved = prefs.fallback_order()
    if saved:
        present = set(keys)
        ordered = [k for k in dict.fromkeys(saved) if k in present]
        seen = set(ordered)
        return ordered + [k for k in keys if k not in seen]

    return list(keys)


def _option_from_row(row: dict) -> Option:
    return Option(
        id=row.get("id"),
        name=row.get("name") or "",
        price=float(row.get("price") or 0),
        description=row.get("description") or "",
        sort_order=int(row.get("sort_order") or 0),
        linked_recipe_id=row.get("linked_recipe_id") or None,
    )


def reconcile_sections(
    meta_rows: Iterable[dict],
    option_rows: Iterable[dict],
    prefs: OrderingPreferences | None = None,
) -> SectionRepository:
    prefs = prefs or OrderingPreferences()

    meta_by_key: dict[str, dict] = {}
    for row in meta_rows:
        key = row.get("section")
        if key:
            meta_by_key[key] = row

    options_by_key: dict[str, list[Option]] = {}
    for row in option_rows:
        key = row.get("section")
        if key:
            options_by_key.setdefault(key, []).append(_option_from_row(row))

    union = list(dict.fromkeys(list(meta_by_key) + list(options_by_key)))

    repo = SectionRepository()
    for key in resolve_order(union, meta_by_key, prefs):
        meta = meta_by_key.get(key) or {}
        description = meta.get("description") or ""
        opts = sorted(options_by_key.get(key, []), key=lambda o: o.sort_order)
        repo.add(Section(
            key=key,
            label=resolve_label(key, description),
            description=description,
            required=bool(meta.get("required")),
            options=opts,
        ))
    return repo


# -------------------- Fuzzy key reconciliation --------------------
def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost))
        prev = cur
    return prev[-1]


def reconcile_section_key(key: str, known_keys: Iterable[str], max_distance: int = FUZZY_KEY_MAX_DISTANCE) -> str:
    """Closest known key within ``max_distance`` edits, else ``key`` unchanged."""
    known = list(known_keys)
    if key in known:
        return key
    best, best_dist = None, None
    for candidate in known:
        dist = levenshtein(key, candidate)
        if best_dist is None or dist < best_dist:
            best, best_dist = candidate, dist
    if best is not None and best_dist <= max_distance:
        log.debug("Multiplier section key %r matched to %r (distance %d)", key, best, best_dist)
        return best
    return key
