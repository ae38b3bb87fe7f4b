"""
Record matching and identifier assignment for imports.

This module handles:
- Matching imported rows to existing records (external ID, natural keys)
- Deterministic selection among several candidates
- Identifier assignment for newly created records
"""

from src.import_.matching.identifier_sequence import (
    IdentifierSequence,
    MaxPlusOneSequence,
    StoreAssignedSequence,
    make_sequence,
)
from src.import_.matching.record_matcher import RecordMatcher

__all__ = [
    "RecordMatcher",
    "IdentifierSequence",
    "MaxPlusOneSequence",
    "StoreAssignedSequence",
    "make_sequence",
]
