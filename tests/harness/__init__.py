"""Test harness utilities for adapter validation."""

from .adapter_harness import EventRecorder, assert_well_formed, collect_stream

__all__ = [
    "EventRecorder",
    "assert_well_formed",
    "collect_stream",
]
