"""External service clients."""

from .ai import AIAnswerService
from .youtube_api import (
    ChatMessage,
    ChatPage,
    NotFoundError,
    PermissionDeniedError,
    QuotaExceededError,
    TokenRefreshResult,
    UnauthorizedError,
    YouTubeAPIClient,
    YouTubeAPIError,
)

__all__ = [
    "AIAnswerService",
    "ChatMessage",
    "ChatPage",
    "NotFoundError",
    "PermissionDeniedError",
    "QuotaExceededError",
    "TokenRefreshResult",
    "UnauthorizedError",
    "YouTubeAPIClient",
    "YouTubeAPIError",
]
