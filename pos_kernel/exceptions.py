"""
Typed exception hierarchy for the POS ingestion pipeline.

Every error carries a machine-readable ``code`` class attribute plus the
structured data needed to log it (the JSON formatter copies public attributes
into ``exc_*`` fields).  Callers catch by type, never by message text.

Hierarchy::

    PosIngestionError (base)
    |
    +-- ConfigurationError
    |   +-- UnknownSourceKindError
    |   +-- ConfigurationNotFoundError
    |   +-- InvalidSettingsError
    |   +-- InvalidSeedDataError
    |
    +-- MappingError
    |   +-- RequiredFieldMissingError
    |   +-- CorrelationFieldNotMappedError
    |
    +-- FetchError
    |   +-- AuthenticationFailedError
    |   +-- FetchTimeoutError
    |   +-- MalformedResponseError
    |
    +-- InsertionError
        +-- InvalidCanonicalValueError

Where each category is handled:

    ConfigurationError, FetchError  -> orchestrator, FAILED ingestion-log row
    MappingError                    -> mapping engine, record skipped
    InsertionError                  -> inserter, exception-log row

Absence of a value in a vendor payload is NOT an error and has no exception
type; the path resolver returns the ``ABSENT`` sentinel instead.
"""


class PosIngestionError(Exception):
    """
    Base exception for all POS ingestion errors.

    All subclasses define a ``code`` class attribute.
    """

    code: str = "POS_INGESTION_ERROR"


# Configuration errors


class ConfigurationError(PosIngestionError):
    """Base exception for configuration and settings problems."""

    code: str = "CONFIGURATION_ERROR"


class UnknownSourceKindError(ConfigurationError):
    """No fetcher is registered for the configuration's source kind."""

    code: str = "UNKNOWN_SOURCE_KIND"

    def __init__(self, source_kind: str, config_id: str | None = None):
        self.source_kind = source_kind
        self.config_id = config_id
        super().__init__(f"Unknown source kind {source_kind!r} for config {config_id}")


class ConfigurationNotFoundError(ConfigurationError):
    """Configuration with given id does not exist or is inactive."""

    code: str = "CONFIGURATION_NOT_FOUND"

    def __init__(self, config_id: str):
        self.config_id = config_id
        super().__init__(f"Configuration not found: {config_id}")


class InvalidSettingsError(ConfigurationError):
    """Process settings could not be parsed."""

    code: str = "INVALID_SETTINGS"

    def __init__(self, key: str, value: object, reason: str):
        self.key = key
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid setting {key}={value!r}: {reason}")


class InvalidSeedDataError(ConfigurationError):
    """A vendor seed entry is missing a field or names an unknown value."""

    code: str = "INVALID_SEED_DATA"

    def __init__(self, vendor_name: str | None, reason: str):
        self.vendor_name = vendor_name
        self.reason = reason
        super().__init__(f"Invalid seed entry for vendor {vendor_name!r}: {reason}")


# Mapping errors


class MappingError(PosIngestionError):
    """Base exception for failures mapping one raw record."""

    code: str = "MAPPING_ERROR"


class RequiredFieldMissingError(MappingError):
    """A mapping rule flagged as required resolved to nothing."""

    code: str = "REQUIRED_FIELD_MISSING"

    def __init__(self, table: str, target_field: str, source_path: str):
        self.table = table
        self.target_field = target_field
        self.source_path = source_path
        super().__init__(
            f"Required field {table}.{target_field} not found at {source_path!r}"
        )


class CorrelationFieldNotMappedError(MappingError):
    """Flat rows cannot be grouped: no header rule targets the key field."""

    code: str = "CORRELATION_FIELD_NOT_MAPPED"

    def __init__(self, target_field: str):
        self.target_field = target_field
        super().__init__(f"No header mapping targets correlation field {target_field!r}")


# Fetch errors


class FetchError(PosIngestionError):
    """Base exception for vendor fetch failures."""

    code: str = "FETCH_ERROR"

    def __init__(self, message: str, source_kind: str | None = None, url: str | None = None):
        self.source_kind = source_kind
        self.url = url
        super().__init__(message)


class AuthenticationFailedError(FetchError):
    """The vendor rejected credentials or the token step failed."""

    code: str = "AUTHENTICATION_FAILED"


class FetchTimeoutError(FetchError):
    """The vendor call exceeded its timeout."""

    code: str = "FETCH_TIMEOUT"


class MalformedResponseError(FetchError):
    """The vendor answered with a body that cannot be parsed."""

    code: str = "MALFORMED_RESPONSE"


# Insertion errors


class InsertionError(PosIngestionError):
    """Base exception for per-record insertion failures."""

    code: str = "INSERTION_ERROR"


class InvalidCanonicalValueError(InsertionError):
    """A canonical value cannot be coerced to its column type."""

    code: str = "INVALID_CANONICAL_VALUE"

    def __init__(self, table: str, field: str, value: object, expected: str):
        self.table = table
        self.field = field
        self.value = value
        self.expected = expected
        super().__init__(
            f"Invalid value for {table}.{field}: {value!r} (expected {expected})"
        )
