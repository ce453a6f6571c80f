"""Fake clocks and contexts for store tests (no live database or AWS)."""

from .clock import FAKE_START, FakeClock
from .contexts import CancelOnCheck

__all__ = [
    "CancelOnCheck",
    "FAKE_START",
    "FakeClock",
]
