"""Configuration settings for Crosslink."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Crosslink configuration."""

    # Data storage
    data_dir: Path = field(default_factory=lambda: Path.home() / ".crosslink")
    db_name: str = "crosslink_db"
    persistence_enabled: bool = True

    # Suggestion lifecycle
    evidence_epsilon: float = 0.05
    suggestion_ttl_hours: int = 168
    rejection_cooldown_hours: int = 720
    broken_link_retention_days: int = 30

    # Scanning
    scan_workers: int = 4
    scan_batch_size: int = 256
    scan_on_index: bool = True

    # Background sweeps (seconds)
    expiry_interval_seconds: float = 3600.0
    validation_interval_seconds: float = 3600.0
    scan_interval_seconds: float = 900.0

    # Service surfaces
    server_transport: str = "stdio"
    server_host: str = "127.0.0.1"
    server_port: int = 8765

    @property
    def db_path(self) -> Path:
        """Get the full database path."""
        return self.data_dir / self.db_name

    @property
    def lock_path(self) -> Path:
        """Lock file held by the process running background sweeps."""
        return self.data_dir / "sweep.lock"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        data_dir_str = os.environ.get("CROSSLINK_DATA_DIR")
        data_dir = Path(data_dir_str) if data_dir_str else Path.home() / ".crosslink"

        return cls(
            data_dir=data_dir,
            db_name=os.environ.get("CROSSLINK_DB_NAME", "crosslink_db"),
            persistence_enabled=_env_bool("CROSSLINK_PERSISTENCE", True),
            evidence_epsilon=float(os.environ.get("CROSSLINK_EVIDENCE_EPSILON", "0.05")),
            suggestion_ttl_hours=int(os.environ.get("CROSSLINK_SUGGESTION_TTL_HOURS", "168")),
            rejection_cooldown_hours=int(
                os.environ.get("CROSSLINK_REJECTION_COOLDOWN_HOURS", "720")
            ),
            broken_link_retention_days=int(
                os.environ.get("CROSSLINK_BROKEN_LINK_RETENTION_DAYS", "30")
            ),
            scan_workers=int(os.environ.get("CROSSLINK_SCAN_WORKERS", "4")),
            scan_batch_size=int(os.environ.get("CROSSLINK_SCAN_BATCH_SIZE", "256")),
            scan_on_index=_env_bool("CROSSLINK_SCAN_ON_INDEX", True),
            expiry_interval_seconds=float(
                os.environ.get("CROSSLINK_EXPIRY_INTERVAL", "3600")
            ),
            validation_interval_seconds=float(
                os.environ.get("CROSSLINK_VALIDATION_INTERVAL", "3600")
            ),
            scan_interval_seconds=float(os.environ.get("CROSSLINK_SCAN_INTERVAL", "900")),
            server_transport=os.environ.get("CROSSLINK_TRANSPORT", "stdio"),
            server_host=os.environ.get("CROSSLINK_HOST", "127.0.0.1"),
            server_port=int(os.environ.get("CROSSLINK_PORT", "8765")),
        )


# Module-level config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the config (for testing)."""
    global _config
    _config = None
