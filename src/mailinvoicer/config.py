"""Configuration management for the mailinvoicer application."""

import os
from dataclasses import dataclass
from typing import Optional


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Database
    database_url: str

    # OAuth
    google_oauth2_client_id: str
    google_oauth2_client_secret: str

    # Classifier
    openai_api_key: str

    google_redirect_uri: Optional[str] = None
    openai_base_url: Optional[str] = None
    classifier_model: str = "gpt-4o"

    # S3/R2 archive (disabled when no bucket is configured)
    s3_endpoint: Optional[str] = None
    s3_bucket: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    # Scan limits
    search_page_size: int = 50
    scan_batch_size: int = 20
    initial_lookback_days: int = 365
    incremental_lookback_days: int = 7
    request_timeout_sec: float = 30.0

    # Whether a message recorded as "error" becomes eligible for a later scan
    retry_errored_messages: bool = False

    @property
    def archive_enabled(self) -> bool:
        return bool(self.s3_bucket)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config: Configuration object

        Raises:
            ValueError: If required environment variables are missing
        """
        required_vars = [
            "DATABASE_URL",
            "GOOGLE_OAUTH2_CLIENT_ID",
            "GOOGLE_OAUTH2_CLIENT_SECRET",
            "OPENAI_API_KEY",
        ]

        missing = [var for var in required_vars if not os.getenv(var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        return cls(
            database_url=os.getenv("DATABASE_URL"),
            google_oauth2_client_id=os.getenv("GOOGLE_OAUTH2_CLIENT_ID"),
            google_oauth2_client_secret=os.getenv("GOOGLE_OAUTH2_CLIENT_SECRET"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            google_redirect_uri=os.getenv("GOOGLE_REDIRECT_URI"),
            openai_base_url=os.getenv("OPENAI_BASE_URL"),
            classifier_model=os.getenv("CLASSIFIER_MODEL", "gpt-4o"),
            s3_endpoint=os.getenv("S3_ENDPOINT"),
            s3_bucket=os.getenv("S3_BUCKET"),
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            search_page_size=int(os.getenv("SEARCH_PAGE_SIZE", "50")),
            scan_batch_size=int(os.getenv("SCAN_BATCH_SIZE", "20")),
            initial_lookback_days=int(os.getenv("INITIAL_LOOKBACK_DAYS", "365")),
            incremental_lookback_days=int(os.getenv("INCREMENTAL_LOOKBACK_DAYS", "7")),
            request_timeout_sec=float(os.getenv("REQUEST_TIMEOUT_SEC", "30")),
            retry_errored_messages=_env_flag("RETRY_ERRORED_MESSAGES"),
        )
