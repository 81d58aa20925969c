import functools
import sys
from enum import StrEnum

from dotenv import load_dotenv
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings

load_dotenv(
    override=True,  # Override existing environment variables
)


class LogLevel(StrEnum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    TRACE = "trace"


class Config(BaseSettings):
    # Backend selection
    storage_backend: str = "local"  # Options: "local", "s3", "cloudinary"
    signed_url_expires: int = 60  # Default lifetime of signed URLs in seconds
    http_timeout: float = 30.0  # Timeout for outbound HTTP calls in seconds
    max_upload_size_mb: int = 100  # Upper bound for direct client uploads

    # Local storage configuration
    local_path: str = "/app/uploads"  # Local storage path within the app directory
    local_base_url: str = "/files/"  # Default base URL for local files
    local_signing_secret: str = ""  # HMAC secret for local signed URLs and uploads

    # S3 configuration
    s3_bucket: str = ""
    s3_region: str = ""
    s3_endpoint: str = ""  # leave empty for AWS, set for MinIO and friends
    s3_prefix: str = ""
    s3_public: bool = False  # Whether to return raw URLs instead of presigned ones

    # Cloudinary configuration
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""

    # FastAPI configuration
    fastapi_host: str = "localhost"
    fastapi_port: int = 8000
    filestore_log_level: LogLevel = LogLevel.INFO

    @field_validator("filestore_log_level", mode="before")
    @classmethod
    def validate_filestore_log_level(cls, v) -> LogLevel:
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            v_lower = v.lower()
            for level in LogLevel:
                if level.value.lower() == v_lower:
                    return level
            valid_levels = [level.value for level in LogLevel]
            raise ValueError(
                f"filestore_log_level must be one of {valid_levels}, got '{v}'"
            )
        raise ValueError(
            f"filestore_log_level must be a string or LogLevel enum, got {type(v)}"
        )

    @field_validator("storage_backend", mode="before")
    @classmethod
    def normalize_storage_backend(cls, v) -> str:
        # Unknown names are resolved by the selector, not rejected here
        return str(v or "").strip().lower()

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


@functools.lru_cache(maxsize=1)
def get_config() -> Config:
    try:
        return Config()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Unexpected error while loading configuration: {e}", file=sys.stderr)
        sys.exit(1)
