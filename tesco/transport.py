"""
HTTP transport for the Tesco grocery REST service.

The service takes every argument (command, keys, session key, page and
command-specific parameters) in the query string of a GET request and answers
with a JSON object. HttpTransport issues that request and decodes the body;
status-code interpretation happens one level up in TescoClient.api_request.

Network failures and undecodable bodies are raised as TescoApiError so callers
only deal with the library's own exception hierarchy.
"""

import logging
from typing import Any, Dict, Optional

import requests

from .config import TescoConfig
from .errors import TescoApiError

logger = logging.getLogger(__name__)


class HttpTransport:
    """
    Sends API requests over HTTP using a shared requests.Session.

    Attributes:
        endpoint: URL of RESTService.aspx
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint or TescoConfig.get_endpoint()
        self.timeout = timeout if timeout is not None else TescoConfig.get_timeout()
        self.session = session or requests.Session()

    def request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Issue one API call.

        Args:
            params: Complete query parameters (command, keys, session key, ...)

        Returns:
            The decoded JSON object

        Raises:
            TescoApiError: On timeouts, connection errors, HTTP errors or a body
                that is not a JSON object
        """
        command = params.get("command")
        try:
            response = self.session.get(self.endpoint, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            logger.warning("Tesco API timed out after %ss (command=%r)", self.timeout, command)
            raise TescoApiError(f"Request timed out after {self.timeout}s") from e
        except requests.exceptions.ConnectionError as e:
            logger.warning("Cannot connect to Tesco API at %s: %s", self.endpoint, e)
            raise TescoApiError(f"Cannot connect to {self.endpoint}") from e
        except requests.exceptions.HTTPError as e:
            logger.error("Tesco API returned HTTP %s (command=%r)", response.status_code, command)
            raise TescoApiError(f"HTTP {response.status_code} from the Tesco API") from e
        except requests.exceptions.RequestException as e:
            logger.error("Unexpected request error (command=%r): %s", command, e, exc_info=True)
            raise TescoApiError(f"Request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            logger.error("Tesco API returned a non-JSON body (command=%r)", command)
            raise TescoApiError("The Tesco API returned a response that is not JSON") from e

        if not isinstance(data, dict):
            raise TescoApiError("The Tesco API returned an unexpected JSON document")
        return data

    def close(self) -> None:
        self.session.close()
