"""Lottery draw subsystem."""

from .orchestrator import (
    DrawOrchestrator,
    DrawOutcome,
    DrawRequest,
    DrawResult,
    LotteryCancellation,
)
from .selector import DrawSelector, Selection, validate_requested

__all__ = [
    "DrawOrchestrator",
    "DrawOutcome",
    "DrawRequest",
    "DrawResult",
    "LotteryCancellation",
    "DrawSelector",
    "Selection",
    "validate_requested",
]
