"""Tests for accessgate.labels"""

import pytest

from accessgate.labels import (
    SecurityLabel,
    SecurityLevel,
    compare,
    is_subset_compartments,
    level_value,
    minimum_required_level,
    normalize_compartments,
)


class TestSecurityLevel:
    """Tests for the classification lattice."""

    def test_ordering(self):
        assert SecurityLevel.PUBLIC < SecurityLevel.INTERNAL
        assert SecurityLevel.INTERNAL < SecurityLevel.CONFIDENTIAL
        assert SecurityLevel.CONFIDENTIAL < SecurityLevel.RESTRICTED
        assert SecurityLevel.RESTRICTED < SecurityLevel.TOP_SECRET

    def test_parse_name_and_rank(self):
        assert SecurityLevel.parse("restricted") == SecurityLevel.RESTRICTED
        assert SecurityLevel.parse(" TOP_SECRET ") == SecurityLevel.TOP_SECRET
        assert SecurityLevel.parse(2) == SecurityLevel.CONFIDENTIAL

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            SecurityLevel.parse("COSMIC")

    def test_level_value_and_compare(self):
        assert level_value("PUBLIC") == 0
        assert level_value(SecurityLevel.TOP_SECRET) == 4
        assert compare("RESTRICTED", "INTERNAL") == 1
        assert compare("INTERNAL", "RESTRICTED") == -1
        assert compare(SecurityLevel.CONFIDENTIAL, "CONFIDENTIAL") == 0

    def test_minimum_required_level(self):
        assert minimum_required_level(["INTERNAL", "RESTRICTED", "PUBLIC"]) == SecurityLevel.RESTRICTED
        assert minimum_required_level([]) == SecurityLevel.PUBLIC


class TestCompartments:
    """Tests for need-to-know set algebra."""

    def test_normalize_dedups(self):
        assert normalize_compartments(["FINANCIAL", "FINANCIAL", " PERSONNEL "]) == {"FINANCIAL", "PERSONNEL"}
        assert normalize_compartments(None) == frozenset()

    def test_normalize_single_string(self):
        assert normalize_compartments("VISITOR") == {"VISITOR"}

    def test_subset(self):
        assert is_subset_compartments(["PERSONNEL"], ["FINANCIAL", "PERSONNEL"])
        assert not is_subset_compartments(["PERSONNEL", "VISITOR"], ["PERSONNEL"])

    def test_empty_need_always_satisfied(self):
        assert is_subset_compartments([], [])
        assert is_subset_compartments(None, ["FINANCIAL"])

    def test_order_independent(self):
        assert is_subset_compartments(["B", "A"], ["A", "B"])


class TestSecurityLabel:
    """Tests for SecurityLabel."""

    def test_equality_ignores_compartment_order(self):
        assert SecurityLabel("CONFIDENTIAL", ["B", "A"]) == SecurityLabel(SecurityLevel.CONFIDENTIAL, {"A", "B"})

    def test_dominates(self):
        high = SecurityLabel(SecurityLevel.RESTRICTED, {"FINANCIAL", "PERSONNEL"})
        low = SecurityLabel(SecurityLevel.CONFIDENTIAL, {"PERSONNEL"})
        assert high.dominates(low)
        assert not low.dominates(high)

    def test_dict_roundtrip(self):
        label = SecurityLabel(SecurityLevel.RESTRICTED, {"VISITOR"})
        data = label.to_dict()
        assert data == {"level": "RESTRICTED", "compartments": ["VISITOR"]}
        assert SecurityLabel.from_dict(data) == label

    def test_str(self):
        assert str(SecurityLabel(SecurityLevel.INTERNAL)) == "INTERNAL"
        assert str(SecurityLabel(SecurityLevel.TOP_SECRET, {"B", "A"})) == "TOP_SECRET[A,B]"
