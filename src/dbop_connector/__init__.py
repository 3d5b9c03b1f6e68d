from .config import ConnectorSettings
from .core import (
    Connector,
    RetryContext,
    always_retry,
    get_default_retry_predicate,
    reset_default_retry_predicate,
    set_default_retry_predicate,
)
from .errors import (
    FailureKind,
    RollbackError,
    SavepointRollbackError,
    TxnRollbackError,
    failure_kind,
)
from .stack import ExceptionStack
from .types import ConnectionManager, Mode

__all__ = [
    "Connector",
    "ConnectorSettings",
    "ConnectionManager",
    "ExceptionStack",
    "FailureKind",
    "Mode",
    "RetryContext",
    "RollbackError",
    "SavepointRollbackError",
    "TxnRollbackError",
    "always_retry",
    "failure_kind",
    "get_default_retry_predicate",
    "reset_default_retry_predicate",
    "set_default_retry_predicate",
]

# Optional: expose OTEL-integrated helper if available.
try:
    from .otel_runtime import execute_traced_optional  # noqa: F401

    __all__.append("execute_traced_optional")
except ImportError:  # pragma: no cover
    pass

__version__ = "0.1.0"
