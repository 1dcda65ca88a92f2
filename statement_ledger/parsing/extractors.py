"""
Field extraction for the two OFX dialects.

OFX 1.x is SGML "tag soup": `<TRNAMT>-50.00` with no closing tag, the value
running until the next tag or line break. OFX 2.x is XML:
`<TRNAMT>-50.00</TRNAMT>`. A FieldExtractor is chosen once per file by
`sniff_dialect` and used for every field of that file.

If the sniff picks the wrong dialect, lookups return None ("missing field")
instead of raising.
"""

import re
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Optional

from statement_ledger.models.statement import StatementDialect

_WELL_FORMED_PROLOGS = ("<?xml", "<?ofx")


def sniff_dialect(content: str) -> StatementDialect:
    """Inspect the first non-whitespace characters for an XML/OFX prolog."""
    head = content.lstrip("\ufeff \t\r\n")[:5].lower()
    if head.startswith(_WELL_FORMED_PROLOGS):
        return StatementDialect.WELL_FORMED
    return StatementDialect.TAG_SOUP


@lru_cache(maxsize=128)
def _open_tag_value(tag: str) -> re.Pattern:
    return re.compile(rf"<{tag}>([^<\r\n]*)", re.IGNORECASE)


@lru_cache(maxsize=128)
def _bounded_value(tag: str) -> re.Pattern:
    return re.compile(rf"<{tag}>([^<]*)</{tag}>", re.IGNORECASE)


class FieldExtractor(ABC):
    """Reads scalar field values out of a chunk of statement text."""

    dialect: StatementDialect

    @abstractmethod
    def value(self, content: str, tag: str) -> Optional[str]:
        """
        Value of the first `tag` in `content`, stripped.

        Returns None when the tag is absent or its value is empty.
        """

    def block(self, content: str, tag: str) -> Optional[str]:
        """
        Text inside the first `<tag>` aggregate.

        Aggregates are closed in both dialects in practice, but tag soup
        exports are not reliable about it, so an unclosed aggregate runs to
        the end of the content.
        """
        match = re.search(rf"<{tag}>", content, re.IGNORECASE)
        if match is None:
            return None
        close = re.compile(rf"</{tag}>", re.IGNORECASE).search(content, match.end())
        if close is not None:
            return content[match.end():close.start()]
        return content[match.end():]


class TagSoupExtractor(FieldExtractor):
    """OFX 1.x: the value runs until the next '<' or newline."""

    dialect = StatementDialect.TAG_SOUP

    def value(self, content: str, tag: str) -> Optional[str]:
        match = _open_tag_value(tag).search(content)
        if match is None:
            return None
        return match.group(1).strip() or None


class WellFormedExtractor(FieldExtractor):
    """OFX 2.x: the value is bounded by the matching close tag."""

    dialect = StatementDialect.WELL_FORMED

    def value(self, content: str, tag: str) -> Optional[str]:
        match = _bounded_value(tag).search(content)
        if match is None:
            return None
        return match.group(1).strip() or None


def extractor_for(content: str) -> FieldExtractor:
    if sniff_dialect(content) == StatementDialect.WELL_FORMED:
        return WellFormedExtractor()
    return TagSoupExtractor()
