import logging

from database import OWN_TABLES, escape_like, quote_identifier
from errors import PersistenceError

logger = logging.getLogger('migrator.replacer')


class LinkReplacer:
    """Rewrites the old link to the new one at every registered location"""

    def __init__(self, executor):
        self.executor = executor

    def replace(self, link, new_link, occurrences):
        """Substring-replace `link` with `new_link` in each (table, column).

        Locations that fail are logged and the rest still run; a
        PersistenceError naming the failed locations is raised at the end.
        Returns the number of rows updated.
        """
        updated = 0
        failed = []
        for loc in occurrences:
            if loc.table in OWN_TABLES:
                continue
            table = quote_identifier(loc.table)
            column = quote_identifier(loc.column)
            try:
                updated += self.executor.execute(
                    f"UPDATE {table} SET {column} = REPLACE({column}, ?, ?) WHERE {column} LIKE ? ESCAPE '\\'",
                    (link, new_link, '%' + escape_like(link) + '%')
                )
            except PersistenceError as e:
                logger.error(f"Failed to replace {link} in {loc.table} -> {loc.column}: {e}")
                failed.append(loc)

        if failed:
            names = ', '.join(f"{loc.table}.{loc.column}" for loc in failed)
            raise PersistenceError(f"Could not rewrite {link} in {names}")
        return updated
