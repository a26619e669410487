import logging
from collections import namedtuple

from database import OWN_TABLES, escape_like, quote_identifier
from errors import PersistenceError, SchemaIntrospectionFailure
from link_registry import Location

logger = logging.getLogger('migrator.scanner')

SchemaColumn = namedtuple('SchemaColumn', ['table', 'column'])


class SchemaScanner:
    def __init__(self, executor, registry, link_prefix):
        self.executor = executor
        self.registry = registry
        self.link_prefix = link_prefix

    def current_database(self):
        try:
            name = self.executor.current_database()
        except PersistenceError as e:
            raise SchemaIntrospectionFailure(f"Failed to get current database: {e}") from e
        if not name:
            raise SchemaIntrospectionFailure('Failed to get current database')
        return name

    def list_columns(self):
        try:
            pairs = self.executor.list_columns()
        except PersistenceError as e:
            raise SchemaIntrospectionFailure(f"Failed to read column metadata: {e}") from e
        return [SchemaColumn(table, column) for table, column in pairs]

    def find_links(self, schema_column):
        """Distinct values of one column that start with the old-host prefix"""
        table = quote_identifier(schema_column.table)
        column = quote_identifier(schema_column.column)
        rows = self.executor.query(
            f"SELECT DISTINCT {column} AS link FROM {table} WHERE {column} LIKE ? ESCAPE '\\'",
            (escape_like(self.link_prefix) + '%',)
        )
        return [row['link'] for row in rows if isinstance(row['link'], str) and row['link']]

    def scan(self, columns=None):
        """Register every old-host link in the schema.

        Returns a dict with the number of newly registered links, the number
        of sightings and the columns whose query failed.
        """
        if columns is None:
            columns = self.list_columns()

        logger.info('Fetching links from database...')
        stats = {'links': 0, 'sightings': 0, 'failed_columns': []}

        for schema_column in columns:
            if schema_column.table in OWN_TABLES:
                continue

            try:
                links = self.find_links(schema_column)
            except PersistenceError as e:
                logger.error(f"Could not scan {schema_column.table} -> {schema_column.column}: {e}")
                stats['failed_columns'].append(schema_column)
                continue

            if not links:
                continue

            logger.info(f"{len(links)} links found in {schema_column.table} -> {schema_column.column}")
            location = Location(schema_column.table, schema_column.column)
            for link in links:
                if self.registry.register_sighting(link, location):
                    stats['links'] += 1
                stats['sightings'] += 1

        flushed = self.registry.flush_occurrences()
        logger.info(f"Fetched {stats['links']} new links from the database ({flushed} occurrence sets updated)")
        return stats
