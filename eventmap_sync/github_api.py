"""
Shared HTTP plumbing for the GitHub REST API.

Provides:
- A requests session with the fixed protocol headers
- Per-call timeouts
- Mapping of network failures to TransientNetworkError
- JSON decoding that raises DecodeError with the raw payload
"""

import logging
from typing import Any, Optional

import requests

from . import __version__
from .errors import DecodeError, TransientNetworkError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
ACCEPT = "application/vnd.github+json"
USER_AGENT = f"eventmap-sync/{__version__}"


def is_transient_response(response: requests.Response) -> bool:
    """
    Check whether a response means "retry later".
    
    5xx and 429 always qualify; a 403 only when GitHub reports the rate
    limit as exhausted.
    """
    if response.status_code >= 500 or response.status_code == 429:
        return True
    
    return (
        response.status_code == 403
        and response.headers.get("x-ratelimit-remaining") == "0"
    )


class GitHubAPI:
    """Thin wrapper around a requests session bound to one API base URL."""
    
    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the API wrapper.
        
        Args:
            api_url: Base URL of the REST API.
            timeout: Per-request timeout in seconds.
            session: Optional session to reuse.
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._request_count = 0
    
    def headers(self, token: Optional[str] = None) -> dict[str, str]:
        """Protocol headers sent with every request."""
        headers = {
            "Accept": ACCEPT,
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers
    
    def request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        json: Optional[Any] = None,
        params: Optional[dict] = None,
    ) -> requests.Response:
        """
        Send one request.
        
        Args:
            method: HTTP method.
            path: Path below the API base URL, starting with "/".
            token: Bearer token, if the call is authenticated.
            json: JSON body.
            params: Query parameters.
            
        Returns:
            The response, whatever its status code.
            
        Raises:
            TransientNetworkError: On timeouts and connection failures.
        """
        url = f"{self.api_url}{path}"
        self._request_count += 1
        
        try:
            response = self.session.request(
                method,
                url,
                headers=self.headers(token),
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise TransientNetworkError(
                f"{method} {path} timed out after {self.timeout}s"
            ) from e
        except requests.RequestException as e:
            raise TransientNetworkError(f"{method} {path} failed: {e}") from e
        
        logger.debug("%s %s -> %s", method, path, response.status_code)
        return response
    
    @staticmethod
    def decode_json(response: requests.Response) -> Any:
        """Parse a JSON body, raising DecodeError with the raw text on failure."""
        try:
            return response.json()
        except ValueError as e:
            logger.error("Undecodable response body: %r", response.text)
            raise DecodeError(
                f"Response from {response.url} is not valid JSON",
                payload=response.text,
            ) from e
    
    @staticmethod
    def raise_transient(response: requests.Response, action: str) -> None:
        """Raise TransientNetworkError if the response is a retry-later status."""
        if is_transient_response(response):
            raise TransientNetworkError(
                f"{action} failed with HTTP {response.status_code}: {response.text}",
                details={"status_code": response.status_code, "body": response.text},
            )
    
    @property
    def request_count(self) -> int:
        """Number of API requests made."""
        return self._request_count
