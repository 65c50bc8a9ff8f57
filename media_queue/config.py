"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Server
    service_port: int = 8080
    log_level: str = "INFO"

    # Service interconnect (base64 encoded PEM keys)
    interconnect_private_key: str = ""
    interconnect_public_key: str = ""
    backend_url: str = ""
    mq_url: str = ""

    # Remote storage (S3 compatible)
    s3_bucket: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_endpoint: str = ""
    s3_region: str = "auto"
    presign_expiry_seconds: int = 3600

    # Job processing
    worker_count: int = 8
    event_replay_depth: int = 16
    sse_keepalive_seconds: float = 3.0
    callback_timeout_seconds: float = 30.0
    callback_path: str = "/v1/media/queue/complete"

    # Media tooling
    exiftool_path: str = "exiftool"
    scratch_dir: Optional[str] = None
    scratch_ttl_hours: int = 2

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
