"""Builders shared by the ingestion tests."""

from typing import Any
from uuid import uuid4

from pos_ingestion.domain.types import Configuration, FieldMapping, SourceKind, TableName


def make_configuration(**overrides: Any) -> Configuration:
    """In-memory Configuration with sensible defaults."""
    values: dict[str, Any] = {
        "config_id": uuid4(),
        "customer_id": "CUST001",
        "vendor_id": uuid4(),
        "vendor_name": "AcmePOS",
        "source_system": "AcmePOS",
        "source_kind": SourceKind.API,
        "outlet_code": "OUT-7",
        "outlet_id": "OUTLET-7",
        "brand_id": "BRAND-1",
        "outlet_name": "Main Street",
        "brand_name": "Brand One",
        "terminal": "T1",
        "gate": "G1",
        "api_url": "https://pos.example.test/transactions",
    }
    values.update(overrides)
    return Configuration(**values)


def header(target: str, path: str, **kwargs: Any) -> FieldMapping:
    return FieldMapping(table=TableName.HEADER, target_field=target, source_path=path, **kwargs)


def item(target: str, path: str, **kwargs: Any) -> FieldMapping:
    return FieldMapping(table=TableName.ITEMS, target_field=target, source_path=path, **kwargs)


def payment(target: str, path: str, **kwargs: Any) -> FieldMapping:
    return FieldMapping(table=TableName.PAYMENTS, target_field=target, source_path=path, **kwargs)


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, json_data: Any = None, content: bytes = b""):
        self.status_code = status_code
        self._json = json_data
        self.content = content

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeSession:
    """Records requests and replays queued responses (or raises queued errors)."""

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response
