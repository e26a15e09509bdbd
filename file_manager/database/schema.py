"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the core schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)
        conn.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Folder Tree
        conn.execute("""
        CREATE TABLE IF NOT EXISTS folders (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            path            TEXT NOT NULL,
            name            TEXT NOT NULL,
            parent_id       INTEGER,
            is_default      INTEGER NOT NULL DEFAULT 0,
            created_at      TEXT NOT NULL,
            FOREIGN KEY(parent_id) REFERENCES folders(id)
        );
        """)

        # Only one folder may carry the default flag. This index is what
        # serializes concurrent get-or-create of the Default folder.
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_folders_single_default
            ON folders(is_default) WHERE is_default = 1;
        """)
        # Sibling names are unique (case-insensitive); roots share parent 0
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_folders_sibling_name
            ON folders(IFNULL(parent_id, 0), name COLLATE NOCASE);
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_folders_parent ON folders(parent_id);")

        # 3. Core File Table
        conn.execute("""
        CREATE TABLE IF NOT EXISTS files (
            id               INTEGER PRIMARY KEY AUTOINCREMENT,
            path             TEXT NOT NULL,        -- stored path or URL
            source_path      TEXT,                 -- normalized path ingested from
            file_name        TEXT NOT NULL,
            hash             BLOB NOT NULL,        -- SHA-256, 32 bytes
            hash_hex         TEXT NOT NULL,
            size             INTEGER NOT NULL,
            is_compressed    INTEGER NOT NULL DEFAULT 0,
            mime_type        TEXT NOT NULL,
            is_photo         INTEGER NOT NULL DEFAULT 0,
            photo_date_taken TEXT,
            camera_make      TEXT,
            camera_model     TEXT,
            latitude         REAL,
            longitude        REAL,
            folder_id        INTEGER NOT NULL,
            is_deleted       INTEGER NOT NULL DEFAULT 0,
            created_at       TEXT NOT NULL,
            updated_at       TEXT,
            FOREIGN KEY(folder_id) REFERENCES folders(id)
        );
        """)

        # Content hash is unique among live records; the losing insert of a
        # concurrent duplicate upload fails here.
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_files_hash_live
            ON files(hash) WHERE is_deleted = 0;
        """)

        # 4. Tags
        conn.execute("""
        CREATE TABLE IF NOT EXISTS file_tags (
            file_id     INTEGER NOT NULL,
            tag         TEXT NOT NULL COLLATE NOCASE,
            PRIMARY KEY (file_id, tag),
            FOREIGN KEY(file_id) REFERENCES files(id) ON DELETE CASCADE
        );
        """)

        # 5. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_path ON files(path);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_source_path ON files(source_path);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_folder ON files(folder_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_file_tags_tag ON file_tags(tag);")

    logging.debug("Database schema initialized.")
