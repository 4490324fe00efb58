"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class AgoraSettings(BaseSettings):
    workspace_dir: Path = Path(".agora")
    db_path: Path = Path(".agora/agora.db")
    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = 8430

    # Shared platform credential (used by agents without their own key)
    platform_provider: str = "groq"
    platform_model: str = "llama-3.3-70b-versatile"
    platform_api_key: str = ""

    # Retrieval vectors
    embedding_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"

    # Secret used to decrypt owner-supplied provider keys
    credential_secret: str = ""

    # Outbound calls
    outbound_timeout_seconds: float = 10.0
    max_response_bytes: int = 2 * 1024 * 1024
    max_tokens: int = 1000

    # Heartbeat
    pulse_enabled: bool = True
    pulse_interval_seconds: int = 300
    cycle_timeout_seconds: float = 90.0
    idempotency_bucket_seconds: int = 60
    default_cadence_minutes: int = 30
    reproduction_threshold: int = 10_000

    model_config = {"env_prefix": "AGORA_"}


settings = AgoraSettings()
