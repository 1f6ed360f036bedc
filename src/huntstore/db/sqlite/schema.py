"""SQLite database schema definitions."""

SCHEMA_VERSION = 1

# Schema SQL for creating all tables
# This schema is idempotent - can be run multiple times safely
SCHEMA_SQL = """
-- entities: table-storage shaped records (one row per partition/row key)
CREATE TABLE IF NOT EXISTS entities (
    table_name TEXT NOT NULL,
    partition_key TEXT NOT NULL,
    row_key TEXT NOT NULL,
    payload TEXT NOT NULL,
    etag TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (table_name, partition_key, row_key)
);

CREATE INDEX IF NOT EXISTS idx_entities_partition ON entities(table_name, partition_key);

-- schema_info: applied schema version
CREATE TABLE IF NOT EXISTS schema_info (
    version INTEGER NOT NULL
);
"""
