"""
Keyword-driven content classification.

Scans free text for classification keywords, highest level first, and
infers need-to-know compartments from a second keyword table. Matching is
case-insensitive substring matching.
"""

import hashlib
from typing import Iterable, Mapping, Optional

from accessgate.labels import SecurityLabel, SecurityLevel


DEFAULT_LEVEL_KEYWORDS: dict[SecurityLevel, tuple[str, ...]] = {
    SecurityLevel.PUBLIC: (),
    SecurityLevel.INTERNAL: ("internal", "staff", "employee"),
    SecurityLevel.CONFIDENTIAL: ("confidential", "sensitive", "private"),
    SecurityLevel.RESTRICTED: ("restricted", "classified", "secret"),
    SecurityLevel.TOP_SECRET: ("top secret", "highly classified", "compartment"),
}

DEFAULT_COMPARTMENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "FINANCIAL": ("financial", "budget", "revenue"),
    "PERSONNEL": ("personnel", "employee", "hr"),
    "VISITOR": ("visitor", "guest"),
    "OPERATIONAL": ("operational", "process"),
}

# Content without any classification keyword
DEFAULT_LEVEL = SecurityLevel.INTERNAL


class KeywordTable:
    """
    Keyword-to-label mappings used by auto_classify.

    Example:
        table = KeywordTable()
        table.add_keyword("merger", SecurityLevel.RESTRICTED)
        table.add_compartment_keyword("merger", "FINANCIAL")

        label = table.classify("Draft merger terms")
        # label.level == RESTRICTED, label.compartments == {"FINANCIAL"}
    """

    def __init__(
        self,
        level_keywords: Optional[Mapping[SecurityLevel | str, Iterable[str]]] = None,
        compartment_keywords: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> None:
        self._levels: dict[SecurityLevel, list[str]] = {
            level: list(words) for level, words in DEFAULT_LEVEL_KEYWORDS.items()
        }
        self._compartments: dict[str, list[str]] = {
            name: list(words) for name, words in DEFAULT_COMPARTMENT_KEYWORDS.items()
        }

        # Overrides replace the whole keyword list of a level
        for level, words in (level_keywords or {}).items():
            self._levels[SecurityLevel.parse(level)] = [w.lower() for w in words]
        for name, words in (compartment_keywords or {}).items():
            self._compartments[name] = [w.lower() for w in words]

    def add_keyword(self, keyword: str, level: SecurityLevel | str) -> None:
        """Register a keyword indicating `level`."""
        self._levels[SecurityLevel.parse(level)].append(keyword.lower())

    def add_compartment_keyword(self, keyword: str, compartment: str) -> None:
        self._compartments.setdefault(compartment, []).append(keyword.lower())

    def keywords_for(self, level: SecurityLevel | str) -> list[str]:
        return list(self._levels.get(SecurityLevel.parse(level), []))

    def find_matching_keywords(self, text: str) -> list[tuple[str, SecurityLevel]]:
        """
        Find all classification keywords present in the given text.

        Returns:
            (keyword, level) tuples, highest level first
        """
        text_lower = text.lower()
        matches = []
        for level in sorted(self._levels, reverse=True):
            for keyword in self._levels[level]:
                if keyword in text_lower:
                    matches.append((keyword, level))
        return matches

    def infer_compartments(self, text: str) -> frozenset[str]:
        text_lower = text.lower()
        return frozenset(
            name for name, words in self._compartments.items()
            if any(word in text_lower for word in words)
        )

    def classify(self, content: str) -> SecurityLabel:
        """
        Classify content by the highest matching keyword level.

        Compartments are only inferred when a classification keyword matched.
        Unmatched content defaults to INTERNAL with no compartments.
        """
        matches = self.find_matching_keywords(content)
        if not matches:
            return SecurityLabel(DEFAULT_LEVEL)

        _, level = matches[0]
        return SecurityLabel(level, self.infer_compartments(content))


def auto_classify(
    content: str,
    keywords: Optional[Mapping[SecurityLevel | str, Iterable[str]]] = None,
) -> SecurityLabel:
    """
    Classify content with the default keyword table.

    Args:
        content: Free text to classify
        keywords: Optional per-level keyword overrides

    Returns:
        SecurityLabel with the first matching level, highest first
    """
    return KeywordTable(level_keywords=keywords).classify(content)


def content_fingerprint(content: str) -> str:
    """Stable SHA-256 fingerprint of classified content."""
    return hashlib.sha256(content.encode()).hexdigest()
