"""
Core Settings

Configuration for the schema and data core: the protected system-table names,
row ownership, paging, snapshot behaviour and what the storage engine can do in
place.
"""

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# System tables of the platform (single source of truth for new settings and tests)
DEFAULT_PROTECTED_TABLES: frozenset[str] = frozenset(
    {
        "admins",
        "sessions",
        "schema_snapshots",
        "schema_snapshot_counter",
        "d1_migrations",
        "api_keys",
        "user_sessions",
        "oauth_providers",
        "app_settings",
        "table_policies",
        "hooks",
        "event_queue",
        "realtime_subscriptions",
        "custom_queries",
        "custom_query_logs",
        "push_subscriptions",
        "notification_rules",
        "notification_templates",
        "notification_logs",
        "vapid_config",
    }
)

# Name prefixes reserved by the engine itself
RESERVED_PREFIXES: tuple[str, ...] = ("sqlite_", "_cf_")


class StorageCapabilities(BaseModel):
    """ALTER forms the storage engine can apply in place

    Anything not listed as supported goes through table recreation.
    """

    model_config = ConfigDict(frozen=True)

    alter_add_column: bool = True
    alter_rename_column: bool = False
    alter_drop_column: bool = False
    alter_column_definition: bool = False


class CoreSettings(BaseModel):
    """Settings shared by every component of the core

    Attributes:
        protected_tables: Names that never accept structural or data mutation
        owner_column: Column holding the creating caller's id on private tables
        default_access_policy: Policy of a user table without a policy row
        default_page_size: Page size used when callers pass no limit
        auto_snapshots: Record a pre_change snapshot before structural changes
        snapshot_mirror_prefix: Object-store key prefix for mirrored snapshots
        capabilities: In-place ALTER support of the storage engine
    """

    model_config = ConfigDict(frozen=True)

    protected_tables: frozenset[str] = Field(default=DEFAULT_PROTECTED_TABLES)
    owner_column: str = "owner_id"
    default_access_policy: Literal["public", "private"] = "private"
    default_page_size: int = Field(default=100, gt=0)
    auto_snapshots: bool = True
    snapshot_mirror_prefix: str = "snapshots"
    capabilities: StorageCapabilities = Field(default_factory=StorageCapabilities)

    @field_validator("protected_tables", mode="before")
    @classmethod
    def _normalize_protected(cls, value: Any) -> frozenset[str]:
        return frozenset(str(name).lower() for name in value)


def load_settings(path: Path | None) -> CoreSettings:
    """Load settings from a JSON file.

    Missing path or file yields the defaults. ``protected_tables`` in the file
    replaces the default set; ``extra_protected_tables`` extends it.
    """
    if path is None or not path.exists():
        return CoreSettings()

    with open(path, encoding="utf-8") as handle:
        payload: dict[str, Any] = json.load(handle)

    extra = payload.pop("extra_protected_tables", [])
    if extra:
        base = payload.get("protected_tables", DEFAULT_PROTECTED_TABLES)
        payload["protected_tables"] = set(base) | set(extra)
    return CoreSettings.model_validate(payload)
