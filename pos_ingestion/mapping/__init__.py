"""Pure mapping layer: path resolution, transforms, field mapping, correlation."""

from pos_ingestion.mapping.correlation import GroupingResult, group
from pos_ingestion.mapping.engine import (
    FieldMappingEngine,
    MappingFailure,
    MappingResult,
    combine_date_time,
)
from pos_ingestion.mapping.paths import ABSENT, is_absent, parse_path, resolve, resolve_all
from pos_ingestion.mapping.transforms import apply_transform

__all__ = [
    "ABSENT",
    "FieldMappingEngine",
    "GroupingResult",
    "MappingFailure",
    "MappingResult",
    "apply_transform",
    "combine_date_time",
    "group",
    "is_absent",
    "parse_path",
    "resolve",
    "resolve_all",
]
