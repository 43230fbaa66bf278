"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines custom exceptions for the persistence layer.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for all agentrun persistence errors."""

    pass


class JobNotFoundError(StoreError):
    pass


class JobStateError(StoreError):
    """Raised when a job transition is attempted out of a terminal state."""

    pass
