"""
Error taxonomy for enrichment connectors and the pipeline
"""

from typing import Optional


class EnrichmentError(Exception):
    """Base class for all enrichment failures"""


class EnrichmentValidationError(EnrichmentError, ValueError):
    """Bad caller input; raised before any network or database call"""


class TransportError(EnrichmentError):
    """HTTP call failed after all retry attempts"""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ProviderSchemaError(EnrichmentError):
    """Upstream payload did not match the expected provider schema"""

    def __init__(self, provider: str, detail: str):
        super().__init__(f"{provider}: unexpected response shape ({detail})")
        self.provider = provider
