"""
Overpass API client

Handles communication with Overpass API including:
- Fallback across mirrored endpoints
- Per-mirror retry with exponential backoff
- Error handling
"""

from typing import Any, Dict, Optional

from loguru import logger

from ..config import get_config
from ..exceptions import TransportError
from ..http_client import HttpClient


class OverpassAPIClient:
    """Client for the Overpass API mirrors"""

    def __init__(self, http: Optional[HttpClient] = None):
        self.config = get_config()
        self.http = http or HttpClient()
        self.mirrors = list(self.config.amenities.overpass_mirrors)
        self.timeout = self.config.amenities.request_timeout
        self.retry = self.config.amenities.retry

    def query(self, query: str) -> Dict[str, Any]:
        """
        Execute an Overpass QL query against each mirror in turn

        Args:
            query: Overpass QL query string

        Returns:
            JSON response from the first mirror that answers

        Raises:
            TransportError: If every mirror fails after its retries
        """
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        last_error: Optional[Exception] = None

        for endpoint in self.mirrors:
            try:
                return self.http.post_form(
                    endpoint,
                    data={"data": query},
                    headers=headers,
                    timeout=self.timeout,
                    retry=self.retry,
                )
            except TransportError as e:
                last_error = e
                logger.warning(f"Overpass mirror {endpoint} failed, trying next...")

        logger.error(f"OSM API failed: all {len(self.mirrors)} Overpass mirrors failed")
        raise TransportError(f"All Overpass mirrors failed: {last_error}")
