from __future__ import annotations

import pytest

from loadsim.core.cursor import Cursor, extract_cursor, pagination_params


def test_extract_cursor_uses_last_item():
    items = [
        {"id": 1, "createdAt": "2026-01-01T00:00:00Z"},
        {"id": 2, "createdAt": "2026-01-01T00:00:01Z"},
    ]
    assert extract_cursor(items) == Cursor("2026-01-01T00:00:01Z", 2)


def test_empty_page_gives_no_cursor():
    assert extract_cursor([]) is None


@pytest.mark.parametrize(
    "item",
    [
        {"id": 1},
        {"createdAt": "2026-01-01T00:00:00Z"},
        {"id": "1", "createdAt": "2026-01-01T00:00:00Z"},
        {"id": True, "createdAt": "2026-01-01T00:00:00Z"},
        "not-an-object",
    ],
)
def test_malformed_last_item_raises(item):
    with pytest.raises(ValueError):
        extract_cursor([item])


def test_ordering_by_timestamp_then_id():
    a = Cursor("2026-01-01T00:00:00Z", 5)
    b = Cursor("2026-01-01T00:00:00Z", 6)
    c = Cursor("2026-01-01T00:00:00.500000+00:00", 1)
    assert a < b < c
    assert c > a
    assert a <= Cursor("2026-01-01T00:00:00+00:00", 5)


def test_naive_timestamp_treated_as_utc():
    assert Cursor("2026-01-01T00:00:00", 1).sort_key == Cursor("2026-01-01T00:00:00Z", 1).sort_key


def test_pagination_params():
    assert pagination_params(None, 20) == {"limit": 20}
    cursor = Cursor("2026-01-01T00:00:00Z", 7)
    assert pagination_params(cursor, 50) == {"createdAt": "2026-01-01T00:00:00Z", "id": 7, "limit": 50}
