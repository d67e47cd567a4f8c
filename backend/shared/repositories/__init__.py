"""Repository layer for the live engagement engine."""

from .channel import ChannelRepository
from .credential import CredentialRepository
from .viewer import ViewerRepository

__all__ = [
    "ChannelRepository",
    "CredentialRepository",
    "ViewerRepository",
]
