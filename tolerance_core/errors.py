"""Exceptions raised for invalid tolerance-analysis input."""

from __future__ import annotations


class ToleranceError(ValueError):
    """Base class for invalid domain input."""


class MateError(ToleranceError):
    """A mate was given dimensions that cannot form a hole/shaft pair."""
