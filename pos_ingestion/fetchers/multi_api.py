"""
MultiApiFetcher: separate transaction, item and payment endpoints (source
kind multiapi).

Configuration options:
    endpoints      {"transactions": url, "items": url, "payments": url};
                   relative paths are joined to api_url
    from_param     query parameter carrying the window start (``Fromdate``)
    to_param       query parameter carrying the window end (``Todate``)
    headers        shared request headers template
    data_path      optional path to the row list inside each response

Any endpoint failure fails the whole fetch; a partial window would advance
the since date past rows that were never read.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from pos_kernel.exceptions import FetchError, MalformedResponseError

from pos_ingestion.domain.types import Configuration
from pos_ingestion.fetchers.base import SegmentedPayload, as_rows, render_placeholders
from pos_ingestion.fetchers.http import HttpFetcher, logger
from pos_ingestion.fetchers.soap import SEGMENTS
from pos_ingestion.mapping.paths import is_absent, resolve


class MultiApiFetcher(HttpFetcher):
    """Calls one endpoint per segment for the same window."""

    source_kind = "multiapi"

    def fetch(self, config: Configuration, since: date) -> SegmentedPayload:
        endpoints = dict(config.option("endpoints") or {})
        missing = [s for s in SEGMENTS if not endpoints.get(s)]
        if missing:
            raise FetchError(
                f"Missing endpoints for segments: {', '.join(missing)}",
                source_kind=self.source_kind,
            )

        context = self.placeholder_context(config, since)
        params = {
            config.option("from_param", "Fromdate"): context["FROM_DATE"],
            config.option("to_param", "Todate"): context["TO_DATE"],
        }
        headers = render_placeholders(dict(config.option("headers") or {}), context)

        rows: dict[str, tuple[Any, ...]] = {}
        for segment in SEGMENTS:
            url = self.endpoint_url(config, render_placeholders(endpoints[segment], context))
            response = self.send(config.http_method or "GET", url, config, headers=headers, params=params)
            rows[segment] = self.segment_rows(self.json_body(response, url), config, url)

        logger.info(
            "multiapi_segments_fetched",
            extra={"since": since.isoformat(), **{s: len(r) for s, r in rows.items()}},
        )
        return SegmentedPayload(
            transactions=rows["transactions"],
            items=rows["items"],
            payments=rows["payments"],
        )

    @staticmethod
    def endpoint_url(config: Configuration, endpoint: str) -> str:
        if "://" in endpoint or not config.api_url:
            return endpoint
        return f"{config.api_url.rstrip('/')}/{endpoint.lstrip('/')}"

    def segment_rows(self, body: Any, config: Configuration, url: str) -> tuple[Any, ...]:
        data_path = config.option("data_path")
        if data_path:
            body = resolve(body, data_path)
            if is_absent(body):
                return ()
        if isinstance(body, (str, int, float, bool)):
            raise MalformedResponseError(
                "Expected a row list or object",
                source_kind=self.source_kind,
                url=url,
            )
        return as_rows(body)
