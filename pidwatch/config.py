"""
Configuration for pidwatch.

Loads settings from environment variables with sensible defaults.
Marker files live under ~/.pidwatch/data and child logs under ~/.pidwatch/logs
unless overridden.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Pidwatch configuration."""

    # Paths
    home_dir: Path = Path(os.environ.get("PIDWATCH_HOME", str(Path.home() / ".pidwatch")))
    data_dir: Path = None
    logs_dir: Path = None
    pidwatch_log: Path = None

    # Logging
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    # Server
    host: str = os.environ.get("PIDWATCH_HOST", "127.0.0.1")
    port: int = int(os.environ.get("PIDWATCH_PORT", "9910"))

    # Process lifecycle (seconds)
    start_wait: float = float(os.environ.get("START_WAIT", "3"))
    stop_timeout: float = float(os.environ.get("STOP_TIMEOUT", "300"))
    term_grace: float = float(os.environ.get("TERM_GRACE", "1"))

    # Crash checker
    check_interval: int = int(os.environ.get("CHECK_INTERVAL", "10"))
    restart_delay: float = float(os.environ.get("RESTART_DELAY", "5"))
    max_restart_attempts: int = int(os.environ.get("MAX_RESTART_ATTEMPTS", "3"))

    def __post_init__(self):
        """Initialize derived paths and create directories."""
        self.data_dir = Path(os.environ.get("PIDWATCH_DATA_DIR", str(self.home_dir / "data")))
        self.logs_dir = Path(os.environ.get("PIDWATCH_LOG_DIR", str(self.home_dir / "logs")))
        self.pidwatch_log = self.home_dir / "pidwatch.log"

        # Create directories
        self.home_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)


config = Config()
