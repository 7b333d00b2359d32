"""
Shared HTTP plumbing for the api, xml, soap and multiapi fetchers.

Every call goes through ``HttpFetcher.send``: explicit timeout, requests
exceptions translated to the FetchError family, 401/403 reported as
authentication failures.
"""

from __future__ import annotations

from datetime import date, tzinfo
from typing import Any

import requests

from pos_kernel.domain.clock import Clock, SystemClock
from pos_kernel.exceptions import (
    AuthenticationFailedError,
    FetchError,
    FetchTimeoutError,
    MalformedResponseError,
)
from pos_kernel.logging_config import get_logger

from pos_ingestion.domain.types import Configuration
from pos_ingestion.fetchers.base import build_placeholder_context
from pos_ingestion.mapping.transforms import DEFAULT_TZ

logger = get_logger("ingestion.fetchers")

DEFAULT_TIMEOUT_SECONDS = 30.0


class HttpFetcher:
    """Base for fetchers that talk to a vendor over HTTP."""

    source_kind = "http"

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Clock | None = None,
        tz: tzinfo | None = None,
    ):
        self._session = session or requests.Session()
        self._timeout = timeout
        self._clock = clock or SystemClock()
        self._tz = tz or DEFAULT_TZ

    def timeout_for(self, config: Configuration) -> float:
        return float(config.timeout_seconds or self._timeout)

    def dispose(self) -> None:
        self._session.close()

    def placeholder_context(self, config: Configuration, since: date) -> dict[str, Any]:
        return build_placeholder_context(config, since, self._clock.now_in(self._tz), self._tz)

    def send(
        self,
        method: str,
        url: str | None,
        config: Configuration,
        **kwargs: Any,
    ) -> requests.Response:
        """
        Issue one request and return the successful response.

        Raises:
            FetchTimeoutError: no answer within the configured timeout.
            AuthenticationFailedError: HTTP 401 or 403.
            FetchError: connection failure, missing URL or other HTTP error.
        """
        if not url:
            raise FetchError(
                f"No URL configured for config {config.config_id}",
                source_kind=self.source_kind,
            )
        timeout = self.timeout_for(config)
        logger.debug(
            "vendor_request_started",
            extra={"method": method.upper(), "url": url, "timeout_seconds": timeout},
        )
        try:
            response = self._session.request(method.upper(), url, timeout=timeout, **kwargs)
        except requests.Timeout as exc:
            raise FetchTimeoutError(
                f"Vendor call timed out after {timeout}s",
                source_kind=self.source_kind,
                url=url,
            ) from exc
        except requests.RequestException as exc:
            raise FetchError(
                f"Vendor call failed: {exc}",
                source_kind=self.source_kind,
                url=url,
            ) from exc

        if response.status_code in (401, 403):
            raise AuthenticationFailedError(
                f"Vendor rejected credentials (HTTP {response.status_code})",
                source_kind=self.source_kind,
                url=url,
            )
        if response.status_code >= 400:
            raise FetchError(
                f"Vendor answered HTTP {response.status_code}",
                source_kind=self.source_kind,
                url=url,
            )
        logger.debug(
            "vendor_request_completed",
            extra={"url": url, "status_code": response.status_code},
        )
        return response

    def json_body(self, response: requests.Response, url: str | None) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"Vendor response is not valid JSON: {exc}",
                source_kind=self.source_kind,
                url=url,
            ) from exc
