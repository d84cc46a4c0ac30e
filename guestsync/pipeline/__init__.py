"""Reconciliation pipeline stages."""

from __future__ import annotations

from .checkpoint import CheckpointStore, JsonFileCheckpointStore, SqlCheckpointStore, advance_checkpoint
from .classify import agent_category, classify
from .conflicts import ConflictReport, EmailGroup, detect_conflicts
from .diff import DiffPolicy, StayDecision, build_proposed_stay, diff_stay, load_existing_stays
from .duplicates import DuplicateCandidate, DuplicateIndex, score_duplicate
from .engine import EnginePolicy, ReconciliationResult, RecordDecision, reconcile
from .identity import resolve_identities, resolve_shared_email
from .normalize import map_language, name_key, normalize_row, validate_email
from .review import REVIEW_CSV_HEADERS, ReviewQueue

__all__ = [
    "CheckpointStore",
    "ConflictReport",
    "DiffPolicy",
    "DuplicateCandidate",
    "DuplicateIndex",
    "EmailGroup",
    "EnginePolicy",
    "JsonFileCheckpointStore",
    "REVIEW_CSV_HEADERS",
    "ReconciliationResult",
    "RecordDecision",
    "ReviewQueue",
    "SqlCheckpointStore",
    "StayDecision",
    "advance_checkpoint",
    "agent_category",
    "build_proposed_stay",
    "classify",
    "detect_conflicts",
    "diff_stay",
    "load_existing_stays",
    "map_language",
    "name_key",
    "normalize_row",
    "reconcile",
    "resolve_identities",
    "resolve_shared_email",
    "score_duplicate",
    "validate_email",
]
