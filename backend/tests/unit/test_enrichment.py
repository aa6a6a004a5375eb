"""Tests for attribute enrichment and provenance."""

from datetime import date
from decimal import Decimal

import pytest

from models import Entry
from services.enrichment import (
    apply_user_edit,
    can_enrich,
    deep_merge,
    enrich_attribute,
    is_locked,
    lock_attribute,
    provenance_of,
    source_priority,
    unlock_attribute,
)


def _entry(**kwargs):
    return Entry(name=kwargs.pop("name", "COFFEE #123"), attribute_provenance={}, **kwargs)


@pytest.mark.parametrize(
    "source,expected",
    [("user", 100), ("rule", 50), ("ai", 30), ("plaid", 10), ("simplefin", 10), ("auto", 5), (None, 0)],
)
def test_source_priority(source, expected):
    assert source_priority(source) == expected


class TestEnrichAttribute:
    def test_first_write_records_provenance(self):
        entry = _entry()

        assert enrich_attribute(entry, "name", "Coffee Shop", source="plaid") is True

        assert entry.name == "Coffee Shop"
        assert provenance_of(entry, "name") == {"value": "Coffee Shop", "source": "plaid", "locked": False}

    def test_higher_priority_overwrites(self):
        entry = _entry()
        enrich_attribute(entry, "name", "Coffee Shop", source="plaid")

        assert enrich_attribute(entry, "name", "Blue Bottle", source="rule") is True
        assert entry.name == "Blue Bottle"

    def test_lower_priority_is_blocked(self):
        entry = _entry()
        enrich_attribute(entry, "name", "Blue Bottle", source="rule")

        assert enrich_attribute(entry, "name", "COFFEE", source="plaid") is False
        assert entry.name == "Blue Bottle"
        assert not can_enrich(entry, "name", "auto")

    def test_same_value_same_source_is_noop(self):
        entry = _entry()
        enrich_attribute(entry, "name", "Coffee Shop", source="plaid")
        before = dict(entry.attribute_provenance)

        assert enrich_attribute(entry, "name", "Coffee Shop", source="plaid") is False
        assert entry.attribute_provenance == before

    def test_user_edit_locks(self):
        entry = _entry()
        apply_user_edit(entry, "name", "Morning coffee")

        assert is_locked(entry, "name")
        assert enrich_attribute(entry, "name", "Overwrite", source="rule") is False
        assert entry.name == "Morning coffee"

    def test_user_source_through_enrich_also_locks(self):
        entry = _entry()
        enrich_attribute(entry, "name", "Mine", source="user")
        assert is_locked(entry, "name")

    def test_decimal_and_date_values_are_json_safe(self):
        entry = _entry(amount=Decimal("1"), date=date(2024, 1, 1))
        enrich_attribute(entry, "amount", Decimal("9.99"), source="plaid")
        enrich_attribute(entry, "date", date(2024, 1, 2), source="plaid")

        assert provenance_of(entry, "amount")["value"] == "9.99"
        assert provenance_of(entry, "date")["value"] == "2024-01-02"


class TestLocking:
    def test_lock_without_history(self):
        entry = _entry(name="Rent")
        lock_attribute(entry, "name")

        assert is_locked(entry, "name")
        assert provenance_of(entry, "name")["value"] == "Rent"

    def test_unlock_keeps_source_rank(self):
        entry = _entry()
        apply_user_edit(entry, "name", "Mine")
        unlock_attribute(entry, "name")

        # Still ranked as a user value; only user or equal-rank writes may replace it
        assert not is_locked(entry, "name")
        assert enrich_attribute(entry, "name", "Theirs", source="plaid") is False
        assert enrich_attribute(entry, "name", "Mine again", source="user") is True

    def test_unlock_unknown_attribute_is_noop(self):
        entry = _entry()
        unlock_attribute(entry, "notes")
        assert entry.attribute_provenance == {}

    def test_provenance_dict_is_replaced_not_mutated(self):
        entry = _entry()
        original = entry.attribute_provenance
        enrich_attribute(entry, "name", "Coffee Shop", source="plaid")

        assert entry.attribute_provenance is not original
        assert original == {}


class TestDeepMerge:
    def test_nested_keys_are_preserved(self):
        base = {"plaid": {"pending": True, "category": ["Food"]}, "note": "a"}
        incoming = {"plaid": {"pending": False}}

        merged = deep_merge(base, incoming)

        assert merged == {"plaid": {"pending": False, "category": ["Food"]}, "note": "a"}
        assert base["plaid"]["pending"] is True

    def test_none_inputs(self):
        assert deep_merge(None, None) == {}
        assert deep_merge(None, {"a": {"b": 1}}) == {"a": {"b": 1}}

    def test_keys_are_stringified(self):
        assert deep_merge({}, {1: "x"}) == {"1": "x"}
