"""
System tables owned by the core

Snapshot rows, the snapshot version counter and per-table access policies.
Every statement is idempotent so ``install_system_tables`` can run at startup.
"""

SCHEMA_SNAPSHOTS_DDL = """CREATE TABLE IF NOT EXISTS schema_snapshots (
  id TEXT PRIMARY KEY DEFAULT (lower(hex(randomblob(16)))),
  version INTEGER NOT NULL UNIQUE,
  name TEXT NOT NULL,
  description TEXT,
  full_schema TEXT NOT NULL,
  tables_json TEXT NOT NULL,
  schema_hash TEXT NOT NULL,
  created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
  created_by TEXT,
  snapshot_type TEXT NOT NULL DEFAULT 'manual',
  mirror_key TEXT
)"""

SCHEMA_SNAPSHOT_COUNTER_DDL = """CREATE TABLE IF NOT EXISTS schema_snapshot_counter (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  last_version INTEGER NOT NULL DEFAULT 0
)"""

SEED_SNAPSHOT_COUNTER = "INSERT OR IGNORE INTO schema_snapshot_counter (id, last_version) VALUES (1, 0)"

TABLE_POLICIES_DDL = """CREATE TABLE IF NOT EXISTS table_policies (
  table_name TEXT PRIMARY KEY,
  access_policy TEXT NOT NULL CHECK (access_policy IN ('public', 'private')),
  updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
)"""

SYSTEM_TABLE_STATEMENTS: tuple[str, ...] = (
    SCHEMA_SNAPSHOTS_DDL,
    "CREATE INDEX IF NOT EXISTS idx_schema_snapshots_version ON schema_snapshots (version DESC)",
    SCHEMA_SNAPSHOT_COUNTER_DDL,
    SEED_SNAPSHOT_COUNTER,
    TABLE_POLICIES_DDL,
)

CORE_SYSTEM_TABLES: tuple[str, ...] = (
    "schema_snapshots",
    "schema_snapshot_counter",
    "table_policies",
)

UPSERT_TABLE_POLICY = (
    "INSERT INTO table_policies (table_name, access_policy, updated_at) VALUES (?, ?, ?) "
    "ON CONFLICT(table_name) DO UPDATE SET "
    "access_policy = excluded.access_policy, updated_at = excluded.updated_at"
)
