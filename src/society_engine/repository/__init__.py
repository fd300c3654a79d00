from society_engine.repository.resource_repository import (
    IMMUTABLE_FIELDS,
    WRITE_ONCE_FIELDS,
    ResourceRepository,
)

__all__ = ["IMMUTABLE_FIELDS", "WRITE_ONCE_FIELDS", "ResourceRepository"]
