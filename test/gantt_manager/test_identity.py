"""
Tests for IdentityResolver tentative id bindings.
"""

import pytest

from gantt_manager.errors import ValidationError
from gantt_manager.identity import IdentityResolver


class TestIdentityResolver:
    def test_bind_and_resolve(self):
        resolver = IdentityResolver()
        resolver.bind("tmp-1", 41)

        assert resolver.is_bound("tmp-1")
        assert resolver.resolve("tmp-1") == 41
        assert len(resolver) == 1

    def test_numeric_tentative_ids_match_by_text(self):
        resolver = IdentityResolver()
        resolver.bind(1700000000000, 9)

        assert resolver.resolve("1700000000000") == 9
        assert resolver.resolve(1700000000000) == 9

    def test_unbound_values_read_as_ids(self):
        resolver = IdentityResolver()
        assert resolver.resolve(5) == 5
        assert resolver.resolve("6") == 6
        assert resolver.resolve(None) == 0

    def test_unknown_tentative_id(self):
        with pytest.raises(ValidationError):
            IdentityResolver().resolve("tmp-x")

    def test_rebinding_to_other_id_fails(self):
        resolver = IdentityResolver()
        resolver.bind("a", 1)
        resolver.bind("a", 1)

        with pytest.raises(ValidationError) as exc_info:
            resolver.bind("a", 2)
        assert exc_info.value.details == {"tentative": "a", "durable": 1}

    def test_empty_tentative_id(self):
        with pytest.raises(ValidationError):
            IdentityResolver().bind("  ", 3)

    def test_resolve_fields(self):
        resolver = IdentityResolver()
        resolver.bind("p", 10)

        data = {"text": "child", "parent": "p", "target": None}
        resolved = resolver.resolve_fields(data, ("parent", "target"))

        assert resolved == {"text": "child", "parent": 10, "target": None}
        assert data["parent"] == "p"

    def test_items_is_a_copy(self):
        resolver = IdentityResolver()
        resolver.bind("a", 1)
        resolver.items()["b"] = 2
        assert resolver.items() == {"a": 1}
