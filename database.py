import sqlite3
import os

from errors import ConfigurationError, PersistenceError

DB_PATH = os.environ.get('MIGRATOR_DB_PATH', 'migrator.db')

# Tables owned by the migrator; never scanned or rewritten
REGISTRY_TABLE = 'media_convert_lookup'
STATE_TABLE = 'migrator_state'
OWN_TABLES = frozenset((REGISTRY_TABLE, STATE_TABLE))


def quote_identifier(name):
    """Double-quote a table or column name found through introspection"""
    return '"' + str(name).replace('"', '""') + '"'


def escape_like(value):
    """Escape LIKE wildcards; statements use a backslash as the ESCAPE character"""
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def get_db_connection(db_path=None):
    """Get a database connection"""
    conn = sqlite3.connect(db_path or DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


class SQLiteExecutor:
    """Runs parameterized statements against a SQLite database, one commit per statement"""

    def __init__(self, db_path=None):
        self.db_path = db_path or DB_PATH
        self.conn = get_db_connection(self.db_path)

    def _run(self, sql, params):
        try:
            cursor = self.conn.execute(sql, tuple(params))
        except sqlite3.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"{e} (while running: {sql})") from e
        return cursor

    def query(self, sql, params=()):
        cursor = self._run(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    def scalar(self, sql, params=()):
        row = self._run(sql, params).fetchone()
        return row[0] if row is not None else None

    def execute(self, sql, params=()):
        cursor = self._run(sql, params)
        self.conn.commit()
        return cursor.rowcount

    def current_database(self):
        rows = self.query('PRAGMA database_list')
        for row in rows:
            if row['name'] == 'main':
                return os.path.basename(row['file']) if row['file'] else ':memory:'
        return None

    def list_columns(self):
        """Return (table, column) pairs for every user table"""
        tables = self.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        columns = []
        for table in tables:
            name = table['name']
            for col in self.query(f'PRAGMA table_info({quote_identifier(name)})'):
                columns.append((name, col['name']))
        return columns

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None


def init_database(executor=None):
    """Initialize the database with required tables"""
    own_executor = executor is None
    executor = executor or SQLiteExecutor()
    try:
        # Registry of every distinct old-host link and where it was seen
        executor.execute(f'''
            CREATE TABLE IF NOT EXISTS {REGISTRY_TABLE} (
                og_link VARCHAR(512) PRIMARY KEY,
                new_link VARCHAR(512),
                occurrences TEXT
            )
        ''')

        # Replaces the host key/value store (scan-completed flag)
        executor.execute(f'''
            CREATE TABLE IF NOT EXISTS {STATE_TABLE} (
                state_key VARCHAR(64) PRIMARY KEY,
                state_value INTEGER NOT NULL
            )
        ''')
    finally:
        if own_executor:
            executor.close()


def get_executor(settings=None):
    """Open the executor for the configured backend (sqlite by default)"""
    settings = settings or {}
    backend = os.environ.get('MIGRATOR_DB_BACKEND') or settings.get('backend') or 'sqlite'
    backend = backend.lower()

    if backend == 'sqlite':
        return SQLiteExecutor(os.environ.get('MIGRATOR_DB_PATH') or settings.get('path') or DB_PATH)
    if backend in ('postgres', 'postgresql'):
        from database_pg import PostgresExecutor
        return PostgresExecutor(settings)

    raise ConfigurationError(f"Unknown database backend '{backend}'")


if __name__ == '__main__':
    init_database()
    print(f"Database initialized at {DB_PATH}")
