from society_engine.storage.object_storage import (
    LocalMediaReader,
    LocalObjectStorage,
    MemoryObjectStorage,
    media_path,
)

__all__ = ["LocalMediaReader", "LocalObjectStorage", "MemoryObjectStorage", "media_path"]
