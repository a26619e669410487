import psycopg2
import psycopg2.extras
import os
import re

from errors import PersistenceError

# Database configuration, overridable per deployment
DB_NAME = os.environ.get('PGDATABASE', 'migrator')
DB_USER = os.environ.get('PGUSER', 'migrator')
DB_PASS = os.environ.get('PGPASSWORD')
DB_HOST = os.environ.get('PGHOST', 'localhost')
DB_PORT = os.environ.get('PGPORT', '5432')

# Columns that LIKE and REPLACE() accept without a cast
TEXT_TYPES = ('text', 'character varying', 'character')


def get_db_connection(settings=None):
    """Get a PostgreSQL database connection with RealDictCursor, using SSL certs when present"""
    settings = settings or {}
    base_dir = os.path.dirname(os.path.abspath(__file__))
    cert_dir = settings.get('certDir') or os.path.join(base_dir, 'stats_certs')

    params = dict(
        dbname=settings.get('name') or DB_NAME,
        user=settings.get('user') or DB_USER,
        password=settings.get('password') or DB_PASS,
        host=settings.get('host') or DB_HOST,
        port=str(settings.get('port') or DB_PORT),
        cursor_factory=psycopg2.extras.RealDictCursor
    )
    if os.path.isdir(cert_dir):
        params.update(
            sslmode="verify-full",
            sslrootcert=os.path.join(cert_dir, 'root.crt'),
            sslcert=os.path.join(cert_dir, 'client.crt'),
            sslkey=os.path.join(cert_dir, 'client.key'),
        )
    return psycopg2.connect(**params)


# '?' inside a quoted identifier or string literal is not a placeholder
_SQL_TOKEN = re.compile(r"""'(?:[^']|'')*'|"(?:[^"]|"")*"|\?|%""")


def _pyformat_token(match):
    token = match.group(0)
    if token == '?':
        return '%s'
    return token.replace('%', '%%')


def to_pyformat(sql):
    """Statements are written with '?' placeholders; psycopg2 wants '%s' and a literal '%' doubled"""
    return _SQL_TOKEN.sub(_pyformat_token, sql)


class PostgresExecutor:
    def __init__(self, settings=None):
        try:
            self.conn = get_db_connection(settings)
        except psycopg2.Error as e:
            raise PersistenceError(f"Could not connect to PostgreSQL: {e}") from e

    def _run(self, sql, params, fetch):
        try:
            with self.conn.cursor() as cur:
                cur.execute(to_pyformat(sql), tuple(params))
                rows = cur.fetchall() if fetch else None
                rowcount = cur.rowcount
            self.conn.commit()
        except psycopg2.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"{e} (while running: {sql})") from e
        return rows, rowcount

    def query(self, sql, params=()):
        rows, _ = self._run(sql, params, fetch=True)
        return [dict(row) for row in rows]

    def scalar(self, sql, params=()):
        rows, _ = self._run(sql, params, fetch=True)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    def execute(self, sql, params=()):
        _, rowcount = self._run(sql, params, fetch=False)
        return rowcount

    def current_database(self):
        return self.scalar('SELECT current_database()')

    def list_columns(self):
        """Return (table, column) pairs for text columns of the base tables in the current schema"""
        rows = self.query('''
            SELECT c.table_name, c.column_name
            FROM information_schema.columns c
            JOIN information_schema.tables t
              ON t.table_schema = c.table_schema AND t.table_name = c.table_name
            WHERE c.table_schema = current_schema()
              AND t.table_type = 'BASE TABLE'
              AND c.data_type = ANY(?)
            ORDER BY c.table_name, c.ordinal_position
        ''', (list(TEXT_TYPES),))
        return [(row['table_name'], row['column_name']) for row in rows]

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

