# config.py
import os
from datetime import timedelta
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

MiB = 1024 * 1024


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_part_size(name: str, default: Optional[int]) -> Optional[int]:
    # "auto" sizes parts per file
    value = os.getenv(name)
    if not value:
        return default
    if value.strip().lower() == "auto":
        return None
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


class Settings(BaseModel):
    # Storage provider
    storage_provider: Literal["s3", "oss", "cos"] = "s3"
    bucket_name: str = ""
    region: str = "us-east-1"
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    session_token: Optional[str] = None
    endpoint: Optional[str] = None
    force_path_style: bool = False
    use_s3_compatible: bool = False
    request_timeout: float = 30.0

    # Upload engine
    part_size: Optional[int] = 5 * MiB
    concurrency: int = 3
    retries: int = 3
    retry_delay: float = 1.0

    # Resumable state
    auto_save_interval: float = 1.0
    state_expiry_days: int = 7
    state_prefix: str = "resumable_upload:"
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_password: str = ""
    cleanup_interval_hours: float = 6.0

    # Upload server
    max_file_size: int = 5 * 1024 * MiB
    max_part_size: int = 100 * MiB
    upload_path_prefix: str = ""

    @property
    def state_expiry(self) -> timedelta:
        return timedelta(days=self.state_expiry_days)

    @property
    def cleanup_interval(self) -> timedelta:
        return timedelta(hours=self.cleanup_interval_hours)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (and .env, if present)"""
        return cls(
            storage_provider=os.getenv("STORAGE_PROVIDER", "s3").lower(),
            bucket_name=os.getenv("BUCKET_NAME", ""),
            region=os.getenv("AWS_REGION", "us-east-1"),
            access_key=os.getenv("AWS_ACCESS_KEY"),
            secret_key=os.getenv("AWS_SECRET_KEY"),
            session_token=os.getenv("AWS_SESSION_TOKEN") or None,
            endpoint=os.getenv("STORAGE_ENDPOINT") or None,
            force_path_style=_env_bool("FORCE_PATH_STYLE"),
            use_s3_compatible=_env_bool("USE_S3_COMPATIBLE"),
            request_timeout=_env_float("REQUEST_TIMEOUT", 30.0),
            part_size=_env_part_size("PART_SIZE", 5 * MiB),
            concurrency=_env_int("UPLOAD_CONCURRENCY", 3),
            retries=_env_int("UPLOAD_RETRIES", 3),
            retry_delay=_env_float("RETRY_DELAY", 1.0),
            auto_save_interval=_env_float("AUTO_SAVE_INTERVAL", 1.0),
            state_expiry_days=_env_int("STATE_EXPIRY_DAYS", 7),
            state_prefix=os.getenv("STATE_PREFIX", "resumable_upload:"),
            redis_host=os.getenv("REDIS_HOST", "redis"),
            redis_port=_env_int("REDIS_PORT", 6379),
            redis_password=os.getenv("REDIS_PASSWORD", ""),
            cleanup_interval_hours=_env_float("CLEANUP_INTERVAL_HOURS", 6.0),
            max_file_size=_env_int("MAX_FILE_SIZE", 5 * 1024 * MiB),
            max_part_size=_env_int("MAX_PART_SIZE", 100 * MiB),
            upload_path_prefix=os.getenv("UPLOAD_PATH_PREFIX", ""),
        )
