import sqlite3
from pathlib import Path

from stock_brain.config import get_db_path as _configured_db_path


DB_PATH = _configured_db_path()


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


def get_db_path() -> Path:
    return DB_PATH


def get_conn() -> sqlite3.Connection:
    """Get a database connection."""
    db_path = Path(DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(db_path)
    con.row_factory = sqlite3.Row
    # SQLite lower() folds ASCII only
    con.create_function("casefold", 1, _casefold, deterministic=True)
    con.execute("PRAGMA journal_mode=WAL;")
    con.execute("PRAGMA foreign_keys=ON;")
    return con


def init_db() -> None:
    con = get_conn()
    cur = con.cursor()

    cur.execute("""
    CREATE TABLE IF NOT EXISTS organizations (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        subscription_tier TEXT DEFAULT 'free',
        billing_exempt INTEGER DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        org_id TEXT,
        role TEXT DEFAULT 'member' CHECK(role IN ('owner','admin','member')),
        display_name TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(org_id) REFERENCES organizations(id) ON DELETE CASCADE
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS inventory_items (
        id INTEGER PRIMARY KEY,
        org_id TEXT NOT NULL,
        name TEXT NOT NULL,
        sku TEXT,
        invoice TEXT, -- supplier invoice / batch reference
        quantity INTEGER DEFAULT 0 CHECK(quantity >= 0),
        reorder_threshold INTEGER DEFAULT 0 CHECK(reorder_threshold >= 0),
        category TEXT,
        item_type TEXT DEFAULT 'stock' CHECK(item_type IN ('stock','operational')),
        operational_category TEXT,
        expiration_date TEXT,
        order_status TEXT CHECK(order_status IS NULL OR order_status = 'ordered'),
        last_restock TEXT DEFAULT CURRENT_TIMESTAMP,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(org_id) REFERENCES organizations(id) ON DELETE CASCADE
    );
    """)
    cur.execute("CREATE INDEX IF NOT EXISTS idx_inventory_org_id ON inventory_items(org_id);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_inventory_sku ON inventory_items(org_id, sku);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_inventory_invoice ON inventory_items(org_id, invoice);")

    cur.execute("""
    CREATE TABLE IF NOT EXISTS inventory_history (
        id INTEGER PRIMARY KEY,
        org_id TEXT NOT NULL,
        item_id INTEGER,
        item_name TEXT NOT NULL,
        sku TEXT,
        previous_quantity INTEGER NOT NULL DEFAULT 0,
        new_quantity INTEGER NOT NULL DEFAULT 0,
        quantity_change INTEGER NOT NULL DEFAULT 0,
        change_type TEXT NOT NULL DEFAULT 'adjustment',
        source TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
    """)
    cur.execute("CREATE INDEX IF NOT EXISTS idx_inventory_history_item ON inventory_history(org_id, item_id);")

    cur.execute("""
    CREATE TABLE IF NOT EXISTS ai_requests (
        id INTEGER PRIMARY KEY,
        org_id TEXT NOT NULL,
        request_type TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    """)
    cur.execute("CREATE INDEX IF NOT EXISTS idx_ai_requests_org ON ai_requests(org_id, created_at);")

    cur.execute("""
    CREATE TABLE IF NOT EXISTS audit_events (
        id INTEGER PRIMARY KEY,
        org_id TEXT NOT NULL,
        actor_user_id TEXT,
        action_type TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id TEXT,
        old_value TEXT,
        new_value TEXT,
        note TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
    """)

    con.commit()
    con.close()
