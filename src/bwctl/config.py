"""Global configuration — XDG paths, env vars, defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _default_data_dir() -> Path:
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "bwctl"
    return Path.home() / ".local" / "share" / "bwctl"


@dataclass
class BwctlConfig:
    """Application-wide configuration."""

    data_dir: Path = field(default_factory=_default_data_dir)
    rules_file: Path | None = None
    # The stock macOS pf.conf already evaluates com.apple/* anchors
    anchor: str = "com.apple/bwctl"
    interface: str = "en0"
    poll_interval: float = 1.0
    retry_interval: float = 30.0
    command_timeout: float = 10.0
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.rules_file is None:
            self.rules_file = self.data_dir / "rules.conf"

    @classmethod
    def load(cls) -> BwctlConfig:
        """Load config from environment variables with XDG defaults."""
        config = cls()

        env_rules = os.environ.get("BWCTL_RULES_FILE")
        if env_rules:
            config.rules_file = Path(env_rules)

        env_anchor = os.environ.get("BWCTL_ANCHOR")
        if env_anchor:
            config.anchor = env_anchor

        env_iface = os.environ.get("BWCTL_INTERFACE")
        if env_iface:
            config.interface = env_iface

        env_interval = os.environ.get("BWCTL_POLL_INTERVAL")
        if env_interval:
            config.poll_interval = float(env_interval)

        env_retry = os.environ.get("BWCTL_RETRY_INTERVAL")
        if env_retry:
            config.retry_interval = float(env_retry)

        return config
