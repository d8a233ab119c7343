import json
import os
from typing import Optional, Dict

DEFAULT_NACOS_ADDR = "127.0.0.1:8848"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_PAGE_SIZE = 100


class Settings:
    """Central configuration for environment variables."""

    @property
    def nacos_addr(self) -> str:
        return os.getenv("NACOS_ADDR", DEFAULT_NACOS_ADDR)

    @property
    def nacos_user_name(self) -> str:
        return os.getenv("NACOS_USERNAME", "nacos")

    @property
    def nacos_password(self) -> Optional[str]:
        return os.getenv("NACOS_PASSWORD")

    @property
    def httpx_logging(self) -> bool:
        return os.getenv("HTTPX_LOGGING", "false").lower() == "true"

    @property
    def request_timeout(self) -> float:
        timeout_str = os.getenv("NACOS_REQUEST_TIMEOUT")
        if not timeout_str:
            return DEFAULT_REQUEST_TIMEOUT
        try:
            return float(timeout_str)
        except ValueError:
            return DEFAULT_REQUEST_TIMEOUT

    @property
    def page_size(self) -> int:
        page_size_str = os.getenv("NACOS_PAGE_SIZE")
        if not page_size_str:
            return DEFAULT_PAGE_SIZE
        try:
            page_size = int(page_size_str)
        except ValueError:
            return DEFAULT_PAGE_SIZE
        return page_size if page_size > 0 else DEFAULT_PAGE_SIZE

    @property
    def extra_headers(self) -> Dict[str, str]:
        extra_headers_str = os.getenv("NACOS_EXTRA_HEADERS")
        headers = {}
        if extra_headers_str:
            try:
                headers = json.loads(extra_headers_str)
            except json.JSONDecodeError:
                headers = {}

        if not isinstance(headers, dict):
            return {}
        return {str(k): str(v) for k, v in headers.items()}

settings = Settings()
