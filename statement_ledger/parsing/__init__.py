"""
Parsing Package

OFX statement parsing for both the SGML (1.x) and XML (2.x) dialects.
"""

from statement_ledger.parsing.extractors import (
    FieldExtractor,
    TagSoupExtractor,
    WellFormedExtractor,
    extractor_for,
    sniff_dialect,
)
from statement_ledger.parsing.ofx_parser import (
    StatementParseError,
    decode_statement,
    parse_ofx_date,
    parse_statement,
)

__all__ = [
    "FieldExtractor",
    "TagSoupExtractor",
    "WellFormedExtractor",
    "extractor_for",
    "sniff_dialect",
    "StatementParseError",
    "decode_statement",
    "parse_ofx_date",
    "parse_statement",
]
