"""
XmlFetcher: templated XML request, XML response (source kind xml).

Configuration options:
    body       XML request template (placeholders as for api sources)
    headers    extra request headers; Content-Type defaults to text/xml
    params     query-string template
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import date
from typing import Any

from pos_kernel.exceptions import MalformedResponseError

from pos_ingestion.domain.types import Configuration
from pos_ingestion.fetchers.base import render_placeholders
from pos_ingestion.fetchers.http import HttpFetcher, logger
from pos_ingestion.fetchers.xml_tree import parse_xml

XML_CONTENT_TYPE = "text/xml; charset=utf-8"


class XmlFetcher(HttpFetcher):
    """Posts an XML body and returns the response as a plain tree."""

    source_kind = "xml"

    def fetch(self, config: Configuration, since: date) -> Any:
        context = self.placeholder_context(config, since)
        url = render_placeholders(config.api_url, context)
        headers = {"Content-Type": XML_CONTENT_TYPE}
        headers.update(render_placeholders(dict(config.option("headers") or {}), context))
        body = render_placeholders(config.option("body"), context)

        response = self.send(
            config.http_method or "POST",
            url,
            config,
            headers=headers,
            params=render_placeholders(dict(config.option("params") or {}), context),
            data=None if body is None else str(body).encode("utf-8"),
        )
        tree = self.parse(response.content, url)
        logger.info(
            "vendor_payload_fetched",
            extra={"source_kind": self.source_kind, "since": since.isoformat()},
        )
        return tree

    def parse(self, document: bytes, url: str | None) -> dict[str, Any]:
        try:
            return parse_xml(document)
        except ET.ParseError as exc:
            raise MalformedResponseError(
                f"Vendor response is not well-formed XML: {exc}",
                source_kind=self.source_kind,
                url=url,
            ) from exc
