"""
HTTP client for external geospatial services

Handles communication with WFS/WMS/OGC/REST providers including:
- Session reuse through an explicit registry
- Bounded retry with a backoff-delay table
- Error handling
"""

import random
import threading
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import requests
import urllib3
from loguru import logger

from .config import RetryConfig, get_config
from .exceptions import TransportError

urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


def backoff_delays(base_delay_s: float, max_attempts: int) -> List[float]:
    """Delay before each retry: base * 2**attempt, one entry per retry"""
    return [base_delay_s * (2 ** attempt) for attempt in range(max(0, max_attempts - 1))]


class SessionRegistry:
    """
    Keyed pool of requests sessions, one per scheme+host.

    Owned by whoever creates it; call clear() to close all sessions.
    """

    def __init__(self, user_agent: Optional[str] = None):
        self.user_agent = user_agent or get_config().api.user_agent
        self._sessions: Dict[str, requests.Session] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key_for(url: str) -> str:
        parts = urlsplit(url)
        return f"{parts.scheme}://{parts.netloc}"

    def get(self, url: str) -> requests.Session:
        key = self.key_for(url)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = requests.Session()
                session.headers.update({"User-Agent": self.user_agent})
                self._sessions[key] = session
            return session

    def __len__(self) -> int:
        return len(self._sessions)

    def clear(self) -> None:
        with self._lock:
            for session in self._sessions.values():
                session.close()
            self._sessions.clear()


class HttpClient:
    """Retrying HTTP client used by every connector"""

    def __init__(
        self,
        registry: Optional[SessionRegistry] = None,
        retry: Optional[RetryConfig] = None,
        timeout: Optional[float] = None,
    ):
        self.config = get_config()
        self.registry = registry or SessionRegistry()
        self.retry = retry or self.config.retry
        self.timeout = timeout or self.config.api.request_timeout

    def close(self) -> None:
        self.registry.clear()

    def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        verify: bool = True,
        retry: Optional[RetryConfig] = None,
    ) -> requests.Response:
        """
        Execute a request with bounded retries.

        Timeouts, connection errors and retryable statuses (5xx/429) are
        retried per the backoff table; other 4xx fail immediately.

        Raises:
            TransportError: If the request fails after all attempts
        """
        policy = retry or self.retry
        delays = backoff_delays(policy.base_delay_s, policy.max_attempts)
        session = self.registry.get(url)
        last_error = "no attempts made"
        last_status: Optional[int] = None

        for attempt in range(policy.max_attempts):
            try:
                response = session.request(
                    method,
                    url,
                    params=params,
                    data=data,
                    json=json,
                    headers=headers,
                    timeout=timeout or self.timeout,
                    verify=verify,
                )
                if response.status_code in policy.retry_statuses or response.status_code >= 500:
                    last_status = response.status_code
                    last_error = f"HTTP {response.status_code}"
                elif response.status_code >= 400:
                    raise TransportError(
                        f"HTTP {response.status_code} from {url}",
                        url=url,
                        status_code=response.status_code,
                    )
                else:
                    return response
            except requests.exceptions.Timeout:
                last_error = "timeout"
                last_status = None
            except requests.exceptions.RequestException as e:
                last_error = str(e)
                last_status = None

            if attempt < len(delays):
                wait_time = delays[attempt] + random.uniform(0, policy.jitter_s)
                logger.warning(f"{method} {url} failed ({last_error}), attempt {attempt + 1}/{policy.max_attempts}. Retrying in {wait_time:.2f}s...")
                time.sleep(wait_time)

        logger.error(f"{method} {url} failed after {policy.max_attempts} attempts: {last_error}")
        raise TransportError(
            f"{method} {url} failed after {policy.max_attempts} attempts: {last_error}",
            url=url,
            status_code=last_status,
        )

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        headers = {"Accept": "application/geo+json, application/json;q=0.9"}
        headers.update(kwargs.pop("headers", None) or {})
        response = self.request("GET", url, params=params, headers=headers, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {url}: {e}", url=url, status_code=response.status_code) from e

    def get_text(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> str:
        response = self.request("GET", url, params=params, **kwargs)
        return response.text

    def post_form(self, url: str, data: Dict[str, Any], **kwargs) -> Any:
        response = self.request("POST", url, data=data, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {url}: {e}", url=url, status_code=response.status_code) from e

    def post_json(self, url: str, payload: Any, **kwargs) -> Any:
        response = self.request("POST", url, json=payload, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {url}: {e}", url=url, status_code=response.status_code) from e
