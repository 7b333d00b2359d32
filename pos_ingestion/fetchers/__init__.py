"""
Vendor fetch strategies, keyed by SourceKind.

    api       RestFetcher       JSON tree
    xml       XmlFetcher        XML parsed to a tree
    soap      SoapFetcher       SegmentedPayload
    multiapi  MultiApiFetcher   SegmentedPayload
    db        SqlFetcher        FlatRows
"""

from __future__ import annotations

from datetime import tzinfo

import requests

from pos_kernel.domain.clock import Clock

from pos_ingestion.domain.types import SourceKind
from pos_ingestion.fetchers.base import (
    Fetcher,
    FlatRows,
    SegmentedPayload,
    build_placeholder_context,
    format_date,
    is_empty_payload,
    render_placeholders,
)
from pos_ingestion.fetchers.http import DEFAULT_TIMEOUT_SECONDS, HttpFetcher
from pos_ingestion.fetchers.multi_api import MultiApiFetcher
from pos_ingestion.fetchers.rest import RestFetcher
from pos_ingestion.fetchers.soap import SoapFetcher
from pos_ingestion.fetchers.sql import SqlFetcher
from pos_ingestion.fetchers.xml_api import XmlFetcher
from pos_ingestion.fetchers.xml_tree import parse_xml


def default_fetchers(
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    session: requests.Session | None = None,
    clock: Clock | None = None,
    tz: tzinfo | None = None,
) -> dict[SourceKind, Fetcher]:
    """One fetcher per source kind, sharing an HTTP session."""
    session = session or requests.Session()
    http = {"session": session, "timeout": timeout, "clock": clock, "tz": tz}
    return {
        SourceKind.API: RestFetcher(**http),
        SourceKind.XML: XmlFetcher(**http),
        SourceKind.SOAP: SoapFetcher(**http),
        SourceKind.MULTIAPI: MultiApiFetcher(**http),
        SourceKind.DB: SqlFetcher(timeout=timeout, clock=clock, tz=tz),
    }


__all__ = [
    "Fetcher",
    "FlatRows",
    "HttpFetcher",
    "MultiApiFetcher",
    "RestFetcher",
    "SegmentedPayload",
    "SoapFetcher",
    "SqlFetcher",
    "XmlFetcher",
    "build_placeholder_context",
    "default_fetchers",
    "format_date",
    "is_empty_payload",
    "parse_xml",
    "render_placeholders",
]
