"""Per-session shopping cart of configurable cakes."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field

from order.catalog import SectionRepository


def _time_id(existing) -> str:
    candidate = int(time.time() * 1000)
    while str(candidate) in existing:
        candidate += 1
    return str(candidate)


def _positive_int(value) -> int | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not number.is_integer() or number < 1:
        return None
    return int(number)


@dataclass
class CartLineItem:
    id: str
    dynamic_selections: dict[str, str] = field(default_factory=dict)
    reward: float = 0.0
    quantity: int = 1
    event_name: str = ""

    def has_selections(self) -> bool:
        return any(bool(v) for v in self.dynamic_selections.values())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "dynamicSelections": dict(self.dynamic_selections),
            "reward": self.reward,
            "quantity": self.quantity,
            "eventName": self.event_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartLineItem":
        return cls(
            id=str(data["id"]),
            dynamic_selections=dict(data.get("dynamicSelections") or {}),
            reward=float(data.get("reward") or 0),
            quantity=int(data.get("quantity") or 1),
            event_name=data.get("eventName") or "",
        )


@dataclass
class Cart:
    items: list[CartLineItem] = field(default_factory=list)
    active_item_id: str | None = None
    # UI-level "current selection" per section (option id), independent of any line
    current_selection: dict[str, str] = field(default_factory=dict)

    # ---- lookup
    def get(self, item_id: str) -> CartLineItem | None:
        return next((it for it in self.items if it.id == item_id), None)

    @property
    def active_item(self) -> CartLineItem | None:
        return self.get(self.active_item_id) if self.active_item_id else None

    # ---- lifecycle
    def _new_item(self) -> CartLineItem:
        item = CartLineItem(
            id=_time_id({it.id for it in self.items}),
            event_name=f"Torta #{len(self.items) + 1}",
        )
        self.items.append(item)
        self.active_item_id = item.id
        return item

    def add_another(self) -> CartLineItem:
        self._prune(keep=None)
        return self._new_item()

    def select(self, section_key: str, option_id: str | None, option_name: str) -> CartLineItem:
        """Record a choice and write it into the active line item (created on demand)."""
        if option_id:
            self.current_selection[section_key] = option_id
        item = self.active_item or self._new_item()
        item.dynamic_selections[section_key] = option_name or ""
        return item

    def focus(self, item_id: str) -> bool:
        if self.get(item_id) is None:
            return False
        previous = self.active_item
        self.active_item_id = item_id
        if previous is not None and previous.id != item_id and not previous.has_selections():
            self.items.remove(previous)
        return True

    def remove_selection(self, item_id: str, section_key: str) -> bool:
        item = self.get(item_id)
        if item is None:
            return False
        item.dynamic_selections.pop(section_key, None)
        self.current_selection.pop(section_key, None)
        self._prune(keep=None)
        return True

    def remove_item(self, item_id: str) -> bool:
        item = self.get(item_id)
        if item is None:
            return False
        self.items.remove(item)
        self._repoint_active()
        return True

    def _prune(self, keep: str | None):
        self.items = [it for it in self.items if it.id == keep or it.has_selections()]
        self._repoint_active()

    def _repoint_active(self):
        if self.active_item_id and self.get(self.active_item_id) is None:
            self.active_item_id = self.items[0].id if self.items else None

    def clear(self):
        self.items = []
        self.active_item_id = None
        self.current_selection = {}

    # ---- validation
    def update_item(self, item_id: str, quantity=None, reward=None, event_name=None) -> dict:
        """Apply edits; returns field errors (nothing is applied when there are any)."""
        item = self.get(item_id)
        if item is None:
            return {"item": "Položka neexistuje."}

        errors = {}
        new_qty = item.quantity
        if quantity is not None:
            new_qty = _positive_int(quantity)
            if new_qty is None:
                errors["quantity"] = "Počet musí byť kladné celé číslo."

        new_reward = item.reward
        if reward is not None:
            try:
                new_reward = float(reward)
            except (TypeError, ValueError):
                new_reward = -1
            if not math.isfinite(new_reward) or new_reward < 0:
                errors["reward"] = "Odmena musí byť nezáporné číslo."

        if errors:
            return errors

        item.quantity = new_qty
        item.reward = new_reward
        if event_name is not None and str(event_name).strip():
            item.event_name = str(event_name).strip()
        return {}

    def missing_required(self, sections: SectionRepository) -> dict[str, list[str]]:
        required = sections.required_keys()
        missing = {}
        for item in self.items:
            gaps = [k for k in required if not item.dynamic_selections.get(k)]
            if gaps:
                missing[item.id] = gaps
        return missing

    # ---- session storage
    def to_dict(self) -> dict:
        return {
            "items": [it.to_dict() for it in self.items],
            "activeItemId": self.active_item_id,
            "currentSelection": dict(self.current_selection),
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "Cart":
        data = data or {}
        return cls(
            items=[CartLineItem.from_dict(d) for d in data.get("items") or []],
            active_item_id=data.get("activeItemId"),
            current_selection=dict(data.get("currentSelection") or {}),
        )
