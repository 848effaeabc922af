"""Volunteer hour claims - claim lifecycle and role-scoped visibility engine."""

from .core.config import VERSION

__version__ = VERSION
