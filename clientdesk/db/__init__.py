from clientdesk.db.entity_store import (
    EntityBackend,
    EntityClient,
    EntityError,
    InMemoryBackend,
    InMemoryEntityStore,
)

__all__ = [
    "EntityBackend",
    "EntityClient",
    "EntityError",
    "InMemoryBackend",
    "InMemoryEntityStore",
]
