"""Configuration dataclass for the chat client."""

import os
from dataclasses import dataclass, field
from pathlib import Path

ENV_PREFIX = "CHATSYNC_"


@dataclass
class ClientConfig:
    """Configuration for ChatSession and its collaborators."""

    base_url: str = "http://localhost:8080"
    """Base URL of the chat data service."""

    timeout_s: float = 10.0
    """Request timeout for data service calls in seconds."""

    headers: dict[str, str] = field(default_factory=dict)
    """Extra headers sent with every data service request."""

    typing_idle_s: float = 2.0
    """Inactivity after which a typing-stopped signal is sent."""

    read_fallback_s: float = 1.0
    """Delay before unread messages are marked read without a visibility signal."""

    read_visibility_threshold: float = 0.5
    """Fraction of a message that must be visible to count as seen."""

    notification_ttl_s: float = 4.0
    """How long a notification stays on screen."""

    notification_preview_length: int = 50
    """Notification text is truncated to this many characters."""

    session_file: Path = field(
        default_factory=lambda: Path.home() / ".chatsync_session.json"
    )
    """Where the token and user profile are persisted between runs."""

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Build a config, overriding defaults from CHATSYNC_* variables."""
        config = cls()
        if url := os.environ.get(f"{ENV_PREFIX}BASE_URL"):
            config.base_url = url
        if timeout := os.environ.get(f"{ENV_PREFIX}TIMEOUT_S"):
            config.timeout_s = float(timeout)
        if session_file := os.environ.get(f"{ENV_PREFIX}SESSION_FILE"):
            config.session_file = Path(session_file)
        return config
