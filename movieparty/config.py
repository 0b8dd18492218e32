"""
Environment driven configuration
"""
import os
from dataclasses import dataclass
from pathlib import Path

GIB = 1024 * 1024 * 1024


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8080
    data_dir: Path = Path("./data")
    max_upload_bytes: int = 2 * GIB
    stream_chunk_size: int = 64 * 1024
    # Janitor cadence and orphan thresholds, seconds
    sweep_interval: float = 300.0
    orphan_age: float = 3600.0
    orphan_age_idle: float = 600.0
    reclaim_delay: float = 1.0
    sweep_delay: float = 2.0
    retry_attempts: int = 2
    retry_delay: float = 5.0
    log_level: str = "INFO"

    @property
    def uploads_dir(self) -> Path:
        return self.data_dir / "uploads"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host=os.environ.get("SERVER_HOST", "0.0.0.0"),
            port=_env_int("PORT", 8080),
            data_dir=Path(os.environ.get("MOVIEPARTY_DATA_DIR", "./data")),
            max_upload_bytes=_env_int("MOVIEPARTY_MAX_UPLOAD_BYTES", 2 * GIB),
            stream_chunk_size=_env_int("MOVIEPARTY_STREAM_CHUNK", 64 * 1024),
            sweep_interval=_env_float("MOVIEPARTY_SWEEP_INTERVAL", 300.0),
            orphan_age=_env_float("MOVIEPARTY_ORPHAN_AGE", 3600.0),
            orphan_age_idle=_env_float("MOVIEPARTY_ORPHAN_AGE_IDLE", 600.0),
            log_level=os.environ.get("MOVIEPARTY_LOG_LEVEL", "INFO").upper(),
        )
