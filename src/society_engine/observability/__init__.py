from society_engine.observability.logger import (
    get_logger,
    get_operation_id,
    operation_scope,
    set_operation_id,
    setup_logging,
)

__all__ = [
    "get_logger",
    "get_operation_id",
    "operation_scope",
    "set_operation_id",
    "setup_logging",
]
