"""Keyset pagination cursor.

A cursor is the sort key ``(createdAt, id)`` of the last item of the last
non-empty page a worker observed. ``None`` stands for "start of sequence".
Traversal is cyclic: an empty page (or a failed read) resets the cursor and
the next request starts again from the first page.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence


def _parse_timestamp(raw: str) -> datetime:
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Cursor:
    created_at: str
    id: int

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return _parse_timestamp(self.created_at), self.id

    def __lt__(self, other: "Cursor") -> bool:
        return self.sort_key < other.sort_key

    def __le__(self, other: "Cursor") -> bool:
        return self.sort_key <= other.sort_key

    def __gt__(self, other: "Cursor") -> bool:
        return self.sort_key > other.sort_key

    def __ge__(self, other: "Cursor") -> bool:
        return self.sort_key >= other.sort_key


def extract_cursor(items: Sequence[Any]) -> Cursor | None:
    """Cursor from the last item of a page; ``None`` for an empty page.

    Raises ValueError when the last item does not carry a usable sort key.
    """
    if not items:
        return None
    last = items[-1]
    if not isinstance(last, dict):
        raise ValueError("page item is not an object")
    created_at = last.get("createdAt")
    item_id = last.get("id")
    if not isinstance(created_at, str) or isinstance(item_id, bool) or not isinstance(item_id, int):
        raise ValueError("page item lacks createdAt/id sort key")
    return Cursor(created_at=created_at, id=item_id)


def pagination_params(cursor: Cursor | None, limit: int) -> dict[str, str | int]:
    """Query parameters for ``GET /computer/pagination``.

    The first page sends only ``limit``; later pages add the cursor.
    """
    if cursor is None:
        return {"limit": limit}
    return {"createdAt": cursor.created_at, "id": cursor.id, "limit": limit}
