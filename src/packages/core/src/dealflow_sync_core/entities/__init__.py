"""Local entity store."""
from dealflow_sync_core.entities.repo import (
    RECORD_TYPES,
    URL_FIELDS,
    Entity,
    get_entity,
    get_by_external_id,
    create_local,
    create_from_external,
    apply_external_update,
    update_fields,
    mark_synced,
    list_pending_push,
    list_entities,
)

__all__ = [
    "RECORD_TYPES",
    "URL_FIELDS",
    "Entity",
    "get_entity",
    "get_by_external_id",
    "create_local",
    "create_from_external",
    "apply_external_update",
    "update_fields",
    "mark_synced",
    "list_pending_push",
    "list_entities",
]
