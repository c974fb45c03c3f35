"""Tests for accessgate.classifier"""

from accessgate.classifier import KeywordTable, auto_classify, content_fingerprint
from accessgate.labels import SecurityLevel


class TestAutoClassify:
    """Tests for keyword-driven classification."""

    def test_default_internal(self):
        label = auto_classify("Lunch menu for Friday")
        assert label.level == SecurityLevel.INTERNAL
        assert label.compartments == frozenset()

    def test_highest_level_wins(self):
        label = auto_classify("Confidential: the top secret launch date")
        assert label.level == SecurityLevel.TOP_SECRET

    def test_case_insensitive(self):
        assert auto_classify("RESTRICTED distribution").level == SecurityLevel.RESTRICTED

    def test_compartments_inferred(self):
        label = auto_classify("Confidential budget and personnel plan")
        assert label.level == SecurityLevel.CONFIDENTIAL
        assert label.compartments == {"FINANCIAL", "PERSONNEL"}

    def test_no_compartments_without_level_keyword(self):
        label = auto_classify("Visitor parking map")
        assert label.level == SecurityLevel.INTERNAL
        assert label.compartments == frozenset()

    def test_keyword_override(self):
        label = auto_classify("Project Falcon notes", keywords={"RESTRICTED": ["falcon"]})
        assert label.level == SecurityLevel.RESTRICTED


class TestKeywordTable:
    """Tests for KeywordTable."""

    def test_add_keyword(self):
        table = KeywordTable()
        table.add_keyword("Merger", SecurityLevel.RESTRICTED)
        table.add_compartment_keyword("merger", "FINANCIAL")

        label = table.classify("Draft merger terms")

        assert label.level == SecurityLevel.RESTRICTED
        assert label.compartments == {"FINANCIAL"}

    def test_find_matching_keywords_ordered(self):
        table = KeywordTable()
        matches = table.find_matching_keywords("sensitive and restricted")
        levels = [level for _, level in matches]
        assert levels == sorted(levels, reverse=True)
        assert matches[0] == ("restricted", SecurityLevel.RESTRICTED)

    def test_keywords_for(self):
        assert "confidential" in KeywordTable().keywords_for("CONFIDENTIAL")


def test_content_fingerprint_is_stable():
    assert content_fingerprint("abc") == content_fingerprint("abc")
    assert len(content_fingerprint("abc")) == 64
