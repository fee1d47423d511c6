import sqlite3
from contextlib import contextmanager
from podcutter.core.config import settings


def init_db(db_path: str = None):
    """Initialize the database with the schema."""
    conn = sqlite3.connect(db_path or settings.DB_PATH)
    cursor = conn.cursor()

    # Feeds Table
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS feeds (
        id TEXT PRIMARY KEY,
        title TEXT,
        description TEXT,
        link TEXT,
        author TEXT,
        image_url TEXT,
        updated_at TIMESTAMP
    )
    """)

    # Episodes Table
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS episodes (
        feed_id TEXT NOT NULL,
        id TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        thumbnail TEXT,
        duration INTEGER DEFAULT 0,
        video_url TEXT NOT NULL DEFAULT '',
        pub_date TIMESTAMP,
        size INTEGER DEFAULT 0,
        position INTEGER DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'new',
        PRIMARY KEY (feed_id, id),
        FOREIGN KEY (feed_id) REFERENCES feeds (id)
    )
    """)

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_episodes_feed_status ON episodes (feed_id, status)")

    conn.commit()
    conn.close()


@contextmanager
def get_db_connection(db_path: str = None):
    """Get a database connection."""
    conn = sqlite3.connect(db_path or settings.DB_PATH)
    conn.row_factory = sqlite3.Row
    # Enable WAL mode so concurrent feed updates don't block each other on reads
    conn.execute("PRAGMA journal_mode=WAL")
    # Set a busy timeout to avoid 'database is locked' errors during heavy processing
    conn.execute("PRAGMA busy_timeout=5000")
    try:
        yield conn
    finally:
        conn.close()
