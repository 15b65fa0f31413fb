"""Dependabot Tracker - live terminal dashboard of open Dependabot alerts.

Polls a fixed set of repositories belonging to one account and renders
aggregate and per-repository open alert counts.
"""

__version__ = "0.1.0"

from dependabot_tracker.config import ConfigError, Credentials, TrackerConfig
from dependabot_tracker.github import AlertClient, GitHubAPIError, RateLimitExceeded
from dependabot_tracker.log import LogSink
from dependabot_tracker.models import (
    AlertPage,
    AlertState,
    ErrorKind,
    FetchResult,
    RepositorySnapshot,
    RepositoryTarget,
    SeverityCounts,
)
from dependabot_tracker.poller import Poller
from dependabot_tracker.registry import RepositoryRegistry
from dependabot_tracker.renderer import Renderer, TerminalError
from dependabot_tracker.state import AlertStateStore

__all__ = [
    # Core
    "AlertClient",
    "Poller",
    "Renderer",
    "AlertStateStore",
    "RepositoryRegistry",
    # Configuration
    "TrackerConfig",
    "Credentials",
    "LogSink",
    # Models
    "AlertPage",
    "AlertState",
    "ErrorKind",
    "FetchResult",
    "RepositorySnapshot",
    "RepositoryTarget",
    "SeverityCounts",
    # Errors
    "ConfigError",
    "GitHubAPIError",
    "RateLimitExceeded",
    "TerminalError",
]
