"""Centralized constants for the storage core.

Single source of truth for namespaces, column names and defaults that are
shared between the storage managers and the events processor.
"""

from typing import FrozenSet

# =============================================================================
# NAMESPACES
# =============================================================================

SCHEMA_METADATA_NAMESPACE = "schema_metadata_info"
SCHEMA_VERSION_NAMESPACE = "schema_version_info"
EVENTS_NAMESPACE = "atlas_events"

# =============================================================================
# COMMON COLUMNS
# =============================================================================

ID = "id"
NAME = "name"

# Outbox event columns (persisted schema, do not rename)
EVENT_TYPE = "type"
EVENT_PROCESSED_ID = "processedId"
EVENT_PROCESSED = "processed"
EVENT_FAILED = "failed"

# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_LOCK_POLL_INTERVAL = 0.5     # seconds
DEFAULT_EVENTS_INITIAL_DELAY = 5.0   # seconds

SUPPORTED_DIALECTS: FrozenSet[str] = frozenset([
    'mysql',
    'postgresql',
    'sqlite',
])
