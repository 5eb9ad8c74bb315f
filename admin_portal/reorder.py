"""Drag-to-reorder model for the section list.

``idle -> dragging -> idle``. While dragging, the dragged key is placed
before the first sibling whose vertical midpoint lies below the pointer.
Dropping returns the sibling order as the new canonical order; an interrupted
drag (window blur, hidden tab) leaves the key at its current placeholder
position.
"""

from __future__ import annotations

IDLE = "idle"
DRAGGING = "dragging"


class DragSession:
    """
    Client-side drag state. The section editor sends the list returned by
    drop() (or cancel()) as the body of PUT /api/sections/order, which runs it
    through apply_drop_order.
    """

    def __init__(self, keys):
        self.order: list[str] = list(dict.fromkeys(keys))
        self.state = IDLE
        self.dragged: str | None = None

    def start(self, key: str) -> bool:
        if self.state != IDLE or key not in self.order:
            return False
        self.state = DRAGGING
        self.dragged = key
        return True

    def move(self, pointer_y: float, midpoints: dict[str, float]) -> list[str]:
        if self.state != DRAGGING:
            return list(self.order)
        siblings = [k for k in self.order if k != self.dragged]
        pos = len(siblings)
        for i, key in enumerate(siblings):
            mid = midpoints.get(key)
            if mid is not None and pointer_y < mid:
                pos = i
                break
        self.order = siblings[:pos] + [self.dragged] + siblings[pos:]
        return list(self.order)

    def _finish(self) -> list[str]:
        self.state = IDLE
        self.dragged = None
        return list(self.order)

    def drop(self) -> list[str]:
        return self._finish()

    def cancel(self) -> list[str]:
        return self._finish()


def apply_drop_order(current_keys, dropped_keys) -> list[str]:
    """Known keys in dropped order, then any known key the drop did not mention."""
    known = list(dict.fromkeys(current_keys))
    known_set = set(known)
    ordered = [k for k in dict.fromkeys(dropped_keys or []) if k in known_set]
    seen = set(ordered)
    return ordered + [k for k in known if k not in seen]
