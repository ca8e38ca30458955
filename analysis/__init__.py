from .analyzer import (
    PumpStatusAnalyzer,
    extract_current,
    parse_confidence,
    status_from_current,
)
from .text import clean_text, levenshtein, match_keyword

__all__ = [
    "PumpStatusAnalyzer",
    "clean_text",
    "extract_current",
    "levenshtein",
    "match_keyword",
    "parse_confidence",
    "status_from_current",
]
