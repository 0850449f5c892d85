from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else str(v)


def _env_int(name: str, default: int) -> int:
    raw = _env(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = _env(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class StorageSettings:
    """
    Object store configuration.

    provider:
      - "local" -> LocalFilesObjectStore (directory-backed, dev/tests)
      - "minio" -> MinioObjectStore (MinIO / S3-compatible via the minio SDK)
      - "s3"    -> S3ObjectStore (native AWS S3 via boto3)
    """
    provider: str
    bucket: str = "files"

    # Local
    local_dir: str = "./data"

    # MinIO
    minio_endpoint: str = "http://minio:9000"
    minio_access_key: str = ""
    minio_secret_key: str = ""

    # AWS S3 (boto3)
    s3_endpoint_url: str = ""
    s3_force_path_style: bool = False

    # Shared by minio + s3; empty lets the SDK resolve it
    region: str = ""

    # Directory download fan-out; 0 means one thread per object with no cap
    download_concurrency: int = 0

    # Default link lifetime for upload_and_link
    link_ttl_seconds: int = 24 * 60 * 60


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class Settings:
    storage: StorageSettings
    logging: LoggingSettings


# ---------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------

def _normalize_storage_provider(raw: str) -> str:
    v = (raw or "").strip().lower()
    if v in ("minio", "object_store", "objectstore"):
        return "minio"
    if v in ("s3", "aws", "aws_s3"):
        return "s3"
    if v in ("local", "file", "files", "filesystem"):
        return "local"
    return "local"


def _load_storage_settings() -> StorageSettings:
    """
    Storage precedence (DO NOT break this):
      1) STORAGE_MODE (deployment/runtime truth)  <-- must win
      2) STORAGE_PROVIDER (legacy override)
      3) default local
    """
    raw_mode = (_env("STORAGE_MODE", "") or "").strip()
    raw_provider = (_env("STORAGE_PROVIDER", "") or "").strip()
    provider = _normalize_storage_provider(raw_mode or raw_provider or "local")

    bucket = (
        _env("STORAGE_BUCKET", "").strip()
        or _env("MINIO_BUCKET", "").strip()
        or _env("S3_BUCKET", "").strip()
        or "files"
    )

    local_dir = (_env("STORAGE_LOCAL_DIR", "") or _env("LOCAL_STORAGE_DIR", "") or "./data").strip()

    minio_endpoint = (_env("MINIO_ENDPOINT", "") or "http://minio:9000").strip().rstrip("/")
    minio_access_key = (_env("MINIO_ACCESS_KEY", "") or "").strip()
    minio_secret_key = (_env("MINIO_SECRET_KEY", "") or "").strip()

    s3_endpoint_url = (_env("S3_ENDPOINT_URL", "") or "").strip().rstrip("/")
    s3_force_path_style = _env_bool("S3_FORCE_PATH_STYLE", False)

    region = (_env("AWS_REGION", "") or _env("AWS_DEFAULT_REGION", "") or _env("S3_REGION", "")).strip()

    download_concurrency = max(0, _env_int("STORAGE_DOWNLOAD_CONCURRENCY", 0))

    link_ttl_seconds = _env_int("STORAGE_LINK_TTL_SECONDS", 24 * 60 * 60)
    if link_ttl_seconds <= 0:
        link_ttl_seconds = 24 * 60 * 60

    return StorageSettings(
        provider=provider,
        bucket=bucket,
        local_dir=local_dir,
        minio_endpoint=minio_endpoint,
        minio_access_key=minio_access_key,
        minio_secret_key=minio_secret_key,
        s3_endpoint_url=s3_endpoint_url,
        s3_force_path_style=s3_force_path_style,
        region=region,
        download_concurrency=download_concurrency,
        link_ttl_seconds=link_ttl_seconds,
    )


def _load_logging_settings() -> LoggingSettings:
    level = (_env("LOG_LEVEL", "") or "INFO").strip().upper()
    return LoggingSettings(level=level)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        storage=_load_storage_settings(),
        logging=_load_logging_settings(),
    )
