"""Ingestion ORM models (configuration tables and canonical tables)."""

from pos_ingestion.models.canonical import (
    IngestionLogModel,
    RawExceptionModel,
    RawPaymentModel,
    RawTransactionItemsModel,
    RawTransactionModel,
    to_json_safe,
)
from pos_ingestion.models.config import (
    CustomerApiConfigModel,
    CustomerOutletMappingModel,
    PosVendorModel,
    VendorFieldMappingModel,
)


def import_all_models() -> None:
    """Register every ingestion model on ``Base.metadata`` (idempotent)."""
    import pos_ingestion.models.canonical  # noqa: F401
    import pos_ingestion.models.config  # noqa: F401


__all__ = [
    "CustomerApiConfigModel",
    "CustomerOutletMappingModel",
    "IngestionLogModel",
    "PosVendorModel",
    "RawExceptionModel",
    "RawPaymentModel",
    "RawTransactionItemsModel",
    "RawTransactionModel",
    "VendorFieldMappingModel",
    "import_all_models",
    "to_json_safe",
]
