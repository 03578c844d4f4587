"""
Configuration management for the Tesco grocery client.

This module centralizes environment variable loading from a .env file at the
project root. It is imported by tesco.client so that .env is loaded before the
client reads its keys.

When no .env exists (CI, production containers) load_dotenv() is a no-op and
the process environment is used as-is.

Environment Variables:
- TESCO_DEVELOPER_KEY: Required, developer key from the Tesco developer portal
- TESCO_APPLICATION_KEY: Required, application key from the Tesco developer portal
- TESCO_API_ENDPOINT: Optional, REST endpoint (defaults to the public groceryapi_b1 service)
- TESCO_API_TIMEOUT: Optional, HTTP timeout in seconds (defaults to 10)
"""

import logging
import os
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://www.techfortesco.com/groceryapi_b1/RESTService.aspx"
DEFAULT_TIMEOUT_SECONDS = 10.0


def load_env_file() -> None:
    """
    Load environment variables from the .env file at the project root.

    The project root is the parent of the package directory
    (tesco/config.py -> tesco/ -> project root). Existing environment variables
    take precedence over values in the file.

    Safe to call multiple times.
    """
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env", override=False)


# Load .env on module import
load_env_file()


class TescoConfig:
    """Configuration accessors for the Tesco API client."""

    @staticmethod
    def get_developer_key() -> Optional[str]:
        """
        Get the Tesco developer key from environment.

        Returns:
            Developer key string or None if not set
        """
        return os.getenv("TESCO_DEVELOPER_KEY")

    @staticmethod
    def get_application_key() -> Optional[str]:
        """
        Get the Tesco application key from environment.

        Returns:
            Application key string or None if not set
        """
        return os.getenv("TESCO_APPLICATION_KEY")

    @staticmethod
    def get_endpoint() -> str:
        """
        Get the REST endpoint URL.

        Returns:
            Endpoint URL (default: the public groceryapi_b1 RESTService.aspx)
        """
        return os.getenv("TESCO_API_ENDPOINT", DEFAULT_ENDPOINT)

    @staticmethod
    def get_timeout() -> float:
        """
        Get the HTTP timeout in seconds.

        Returns:
            Timeout as float (default: 10.0). Unparseable values fall back to the default.
        """
        raw = os.getenv("TESCO_API_TIMEOUT")
        if not raw:
            return DEFAULT_TIMEOUT_SECONDS
        try:
            return float(raw)
        except ValueError:
            logger.warning("Ignoring invalid TESCO_API_TIMEOUT=%r, using %s", raw, DEFAULT_TIMEOUT_SECONDS)
            return DEFAULT_TIMEOUT_SECONDS


def validate_required_config(developer_key: Optional[str] = None, application_key: Optional[str] = None) -> Tuple[str, str]:
    """
    Validate that the API keys are available and return them.

    Keys passed in take precedence over the environment.

    Args:
        developer_key: Developer key given explicitly, if any
        application_key: Application key given explicitly, if any

    Returns:
        Tuple of (developer_key, application_key)

    Raises:
        RuntimeError: If any required configuration is missing
    """
    developer_key = developer_key or TescoConfig.get_developer_key()
    application_key = application_key or TescoConfig.get_application_key()
    missing = []

    if not developer_key:
        missing.append("TESCO_DEVELOPER_KEY")

    if not application_key:
        missing.append("TESCO_APPLICATION_KEY")

    if missing:
        raise RuntimeError(
            "Missing required environment variables:\n" +
            "\n".join(f"  - {var}" for var in missing) +
            "\n\nPass the keys to TescoClient, or create a .env file at the project root with these variables "
            "(keys are issued at https://secure.techfortesco.com/tescoapiweb/)."
        )

    return developer_key, application_key
