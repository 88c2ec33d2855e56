"""SQL table definitions."""

SCHEMA_VERSION = 1

TABLES = [
    # ── Config ──────────────────────────────────────────────
    """
    CREATE TABLE IF NOT EXISTS config_versions (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        config_json     TEXT NOT NULL,
        changed_keys    TEXT,
        created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
        source          TEXT NOT NULL DEFAULT 'user'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_config_versions_created ON config_versions(created_at)",

    # ── Decisions ───────────────────────────────────────────
    """
    CREATE TABLE IF NOT EXISTS charging_decisions (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        decided_at      TEXT NOT NULL,
        action          TEXT NOT NULL,
        reasons_json    TEXT NOT NULL,
        strategy        TEXT,
        source          TEXT NOT NULL DEFAULT 'rules'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_decisions_decided ON charging_decisions(decided_at)",
    "CREATE INDEX IF NOT EXISTS idx_decisions_action ON charging_decisions(action, decided_at)",

    # ── Commands ────────────────────────────────────────────
    """
    CREATE TABLE IF NOT EXISTS inverter_commands (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        issued_at       TEXT NOT NULL,
        inverter_id     TEXT NOT NULL,
        topic           TEXT NOT NULL,
        value           TEXT NOT NULL,
        success         INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_commands_issued ON inverter_commands(issued_at)",
    "CREATE INDEX IF NOT EXISTS idx_commands_inverter ON inverter_commands(inverter_id, issued_at)",

    # ── Schema Version ──────────────────────────────────────
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        id      INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL
    )
    """,
]
