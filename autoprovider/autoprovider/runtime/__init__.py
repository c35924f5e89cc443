"""Run-time interpretation of generated provider configs."""

from autoprovider.runtime.catalog import UNSUPPORTED, DynamicCatalog
from autoprovider.runtime.engine import (
    EngineState,
    ExtractionError,
    Operation,
    OperationResult,
    RequestBuildError,
    TransformEngine,
)

__all__ = [
    "UNSUPPORTED",
    "DynamicCatalog",
    "EngineState",
    "ExtractionError",
    "Operation",
    "OperationResult",
    "RequestBuildError",
    "TransformEngine",
]
