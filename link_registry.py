import json
import logging
from collections import namedtuple

from database import REGISTRY_TABLE

logger = logging.getLogger('migrator.registry')

# A (table, column) pair known to contain a link
Location = namedtuple('Location', ['table', 'column'])

LinkRecord = namedtuple('LinkRecord', ['original_link', 'new_link', 'occurrences'])


def dump_occurrences(locations):
    return json.dumps([{'table': loc.table, 'column': loc.column} for loc in locations])


def load_occurrences(raw, link=None):
    """Parse the stored occurrences column, dropping malformed entries and duplicates"""
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Unreadable occurrences for {link}: {e}")
        return []

    locations = []
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict) or not item.get('table') or not item.get('column'):
            continue
        loc = Location(item['table'], item['column'])
        if loc not in locations:
            locations.append(loc)
    return locations


class LinkRegistry:
    """Persisted deduplication table: one row per distinct original link"""

    def __init__(self, executor):
        self.executor = executor
        # Occurrence sets gathered during the current scan, flushed once per link
        self._pending = {}

    def _row_to_record(self, row):
        return LinkRecord(row['og_link'], row['new_link'], load_occurrences(row['occurrences'], row['og_link']))

    def get(self, link):
        rows = self.executor.query(
            f'SELECT og_link, new_link, occurrences FROM {REGISTRY_TABLE} WHERE og_link = ?', (link,)
        )
        return self._row_to_record(rows[0]) if rows else None

    def register_sighting(self, link, location):
        """Record that `link` was seen at `location`.

        The row is inserted if absent. The location is merged into the
        link's pending occurrence set, which starts from whatever an earlier
        scan already stored so re-scans only ever grow it. Returns True when
        the link was not known before.
        """
        created = False
        if link not in self._pending:
            inserted = self.executor.execute(
                f'INSERT INTO {REGISTRY_TABLE} (og_link) VALUES (?) ON CONFLICT (og_link) DO NOTHING', (link,)
            )
            created = inserted > 0
            stored = [] if created else self.get(link).occurrences
            self._pending[link] = stored

        if location not in self._pending[link]:
            self._pending[link].append(location)
        return created

    def persist_occurrences(self, link, locations):
        """Overwrite the stored occurrence set for a link"""
        self.executor.execute(
            f'UPDATE {REGISTRY_TABLE} SET occurrences = ? WHERE og_link = ?',
            (dump_occurrences(locations), link)
        )

    def flush_occurrences(self):
        """Write every pending occurrence set, one update per link"""
        flushed = 0
        for link, locations in self._pending.items():
            self.persist_occurrences(link, locations)
            flushed += 1
        self._pending = {}
        return flushed

    def count_total(self):
        return self.executor.scalar(f'SELECT COUNT(1) FROM {REGISTRY_TABLE}') or 0

    def count_unconverted(self):
        return self.executor.scalar(f'SELECT COUNT(1) FROM {REGISTRY_TABLE} WHERE new_link IS NULL') or 0

    def fetch_unconverted_batch(self, offset, limit):
        rows = self.executor.query(
            f'''SELECT og_link, new_link, occurrences FROM {REGISTRY_TABLE}
                WHERE new_link IS NULL ORDER BY og_link LIMIT ? OFFSET ?''',
            (limit, offset)
        )
        return [self._row_to_record(row) for row in rows]

    def fetch_converted_batch(self, offset, limit):
        rows = self.executor.query(
            f'''SELECT og_link, new_link, occurrences FROM {REGISTRY_TABLE}
                WHERE new_link IS NOT NULL ORDER BY og_link LIMIT ? OFFSET ?''',
            (limit, offset)
        )
        return [self._row_to_record(row) for row in rows]

    def mark_converted(self, link, new_link):
        """Set new_link once. Raises PersistenceError if the write fails."""
        updated = self.executor.execute(
            f'UPDATE {REGISTRY_TABLE} SET new_link = ? WHERE og_link = ? AND new_link IS NULL',
            (new_link, link)
        )
        if updated == 0:
            logger.warning(f"{link} was already converted or is not registered, new link not stored")
        return updated > 0
