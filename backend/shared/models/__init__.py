"""Shared data models for the live engagement engine."""

from .channel import Channel
from .credential import Credential
from .viewer import AdminStatus, Viewer, WelcomeStatus

__all__ = [
    "AdminStatus",
    "Channel",
    "Credential",
    "Viewer",
    "WelcomeStatus",
]
