"""Core modules for the engine."""

from .config import OAUTH_SCOPES, EngineSettings, get_settings
from .health_server import HealthCheckServer
from .logging import setup_logging
from .state import EngineState, LiveSession
from .tasks import RepeatingTask, seconds_until_boundary

__all__ = [
    # Settings
    "EngineSettings",
    "get_settings",
    "OAUTH_SCOPES",
    # Setup functions
    "setup_logging",
    # Services
    "HealthCheckServer",
    # State
    "EngineState",
    "LiveSession",
    "RepeatingTask",
    "seconds_until_boundary",
]
