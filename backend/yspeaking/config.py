import logging
import sys

from pydantic_settings import BaseSettings
from typing import Optional

from yspeaking.utils.exceptions import ConfigurationError


def setup_logging():
    """Configure application logging."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # Set third-party loggers to WARNING to reduce noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# Initialize logging on import
setup_logging()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Upstream LLM API (server-side only, used by the CORS relay)
    qwen_api_key: Optional[str] = None
    upstream_url: str = "https://dashscope.aliyuncs.com/compatible-mode/v1/chat/completions"
    upstream_default_model: str = "qwen-turbo"

    # Streaming client
    qwen_proxy_url: Optional[str] = None
    qwen_model: str = "qwen-vl-plus"
    stream_require_done: bool = False

    # Conversation REST backend used by the client
    api_base_url: str = "http://localhost:8000/api"

    # Timeout settings (seconds)
    provider_timeout: int = 60
    upload_timeout: float = 20.0

    # Retry settings for non-streaming requests
    request_max_retries: int = 2
    retry_base_delay: float = 0.5
    retry_jitter: bool = False
    upload_max_retries: int = 1

    # Mock backend
    database_url: str = "sqlite+aiosqlite:///:memory:"
    mock_latency_ms: int = 0
    mock_timeout_delay: float = 6.0

    # Server configuration
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def require_proxy_url() -> str:
    """Return the configured proxy URL or fail with a ConfigurationError."""
    if not settings.qwen_proxy_url:
        raise ConfigurationError(
            "Missing Qwen proxy URL, set QWEN_PROXY_URL in the environment or .env"
        )
    return settings.qwen_proxy_url


settings = Settings()
