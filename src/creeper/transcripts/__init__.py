"""Session transcript discovery and decoding."""

from .correlator import TranscriptCandidate, TranscriptCorrelator
from .events import TranscriptAnalysis, TranscriptEvent, decode_event, parse_transcript

__all__ = [
    "TranscriptAnalysis",
    "TranscriptCandidate",
    "TranscriptCorrelator",
    "TranscriptEvent",
    "decode_event",
    "parse_transcript",
]
