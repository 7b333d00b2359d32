"""
pos_ingestion -- Configuration-driven POS transaction ingestion.

Fetches vendor payloads (REST/JSON, SOAP/XML, SQL), maps them through
declarative field mappings into canonical transaction/item/payment records,
and inserts them idempotently with per-record failure isolation.

Architecture:
    pos_ingestion/ depends on pos_kernel/ only.  The scheduler in pos_batch/
    drives the orchestrator defined in pos_ingestion.services.
"""
