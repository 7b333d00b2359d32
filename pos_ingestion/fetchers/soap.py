"""
SoapFetcher: three segment operations on one DataSet-style service (source
kind soap).

Each segment (transactions, items, payments) is a separate call with the
method name in the SOAP header.  Rows are pulled from each parsed response
at a configurable path (namespace prefixes already stripped) and returned as
a SegmentedPayload for the correlator.

Configuration options:
    username, password, soap_action, namespace, optional_data
    methods     {"transactions": ..., "items": ..., "payments": ...}
    segments    row paths per segment, overriding DEFAULT_SEGMENT_PATHS
"""

from __future__ import annotations

from datetime import date
from typing import Any, Mapping
from xml.sax.saxutils import escape

from pos_ingestion.domain.types import Configuration
from pos_ingestion.fetchers.base import SegmentedPayload, as_rows
from pos_ingestion.fetchers.http import logger
from pos_ingestion.fetchers.xml_api import XML_CONTENT_TYPE, XmlFetcher
from pos_ingestion.mapping.paths import is_absent, resolve

SEGMENTS = ("transactions", "items", "payments")

DEFAULT_NAMESPACE = "http://eshopaid.in"

DEFAULT_METHODS = {
    "transactions": "TransactionSegment",
    "items": "ItemSegment",
    "payments": "PaymentSegment",
}

_RESULT = "Envelope.Body.GetResponseAsDataSetResponse.GetResponseAsDataSetResult.diffgram"

DEFAULT_SEGMENT_PATHS = {
    "transactions": f"{_RESULT}.eShopaidTransactionSegment.TransactionSegment",
    "items": f"{_RESULT}.eShopaidItemSegment.ItemSegment",
    "payments": f"{_RESULT}.NewDataSet.Table",
}

ENVELOPE_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" xmlns:esh="{namespace}">
  <soapenv:Header>
    <esh:eShopaidSoapHeader>
      <esh:UserName>{username}</esh:UserName>
      <esh:Password>{password}</esh:Password>
      <esh:MethodName>{method}</esh:MethodName>
      <esh:FromDate>{from_date}</esh:FromDate>
      <esh:ToDate>{to_date}</esh:ToDate>
      <esh:OptionalData>{optional_data}</esh:OptionalData>
    </esh:eShopaidSoapHeader>
  </soapenv:Header>
  <soapenv:Body>
    <esh:GetResponseAsDataSet />
  </soapenv:Body>
</soapenv:Envelope>"""


def build_envelope(
    method: str,
    from_date: str,
    to_date: str,
    username: str = "",
    password: str = "",
    namespace: str = DEFAULT_NAMESPACE,
    optional_data: str = "",
) -> str:
    return ENVELOPE_TEMPLATE.format(
        namespace=escape(namespace, {'"': "&quot;"}),
        username=escape(username),
        password=escape(password),
        method=escape(method),
        from_date=escape(from_date),
        to_date=escape(to_date),
        optional_data=escape(optional_data),
    )


class SoapFetcher(XmlFetcher):
    """Fetches the three segments and returns them unjoined."""

    source_kind = "soap"

    def fetch(self, config: Configuration, since: date) -> SegmentedPayload:
        context = self.placeholder_context(config, since)
        methods = {**DEFAULT_METHODS, **dict(config.option("methods") or {})}
        paths = {**DEFAULT_SEGMENT_PATHS, **dict(config.option("segments") or {})}

        rows: dict[str, tuple[Any, ...]] = {}
        for segment in SEGMENTS:
            tree = self.call(config, methods[segment], context["FROM_DATE"], context["TO_DATE"])
            rows[segment] = self.extract(tree, paths[segment])

        payload = SegmentedPayload(
            transactions=rows["transactions"],
            items=rows["items"],
            payments=rows["payments"],
        )
        logger.info(
            "soap_segments_fetched",
            extra={
                "since": since.isoformat(),
                "transactions": len(payload.transactions),
                "items": len(payload.items),
                "payments": len(payload.payments),
            },
        )
        return payload

    def call(self, config: Configuration, method: str, from_date: str, to_date: str) -> dict[str, Any]:
        envelope = build_envelope(
            method,
            from_date,
            to_date,
            username=str(config.option("username", "")),
            password=str(config.option("password", "")),
            namespace=str(config.option("namespace", DEFAULT_NAMESPACE)),
            optional_data=str(config.option("optional_data", "")),
        )
        response = self.send(
            "POST",
            config.api_url,
            config,
            headers={
                "Content-Type": XML_CONTENT_TYPE,
                "SOAPAction": str(config.option("soap_action", "")),
            },
            data=envelope.encode("utf-8"),
        )
        return self.parse(response.content, config.api_url)

    @staticmethod
    def extract(tree: Mapping[str, Any], path: str) -> tuple[Any, ...]:
        found = resolve(tree, path)
        if is_absent(found):
            return ()
        return as_rows(found)
