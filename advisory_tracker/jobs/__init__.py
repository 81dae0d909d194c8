"""
Background Jobs for the Advisory Tracker.

- lock_sweeper: periodic removal of expired entry locks
"""

from .lock_sweeper import run_lock_sweep

__all__ = ["run_lock_sweep"]
