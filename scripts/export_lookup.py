#!/usr/bin/env python3
"""Export the link registry to CSV (original link, new link, occurrences).

Usage: python scripts/export_lookup.py out.csv [config.json]
"""
import os
import sys
import csv
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from config import load_config
from database import get_executor, init_database
from link_registry import LinkRegistry

PAGE_SIZE = 1000


def export(registry, out):
    writer = csv.writer(out)
    writer.writerow(['original_link', 'new_link', 'occurrences'])
    written = 0
    for fetch in (registry.fetch_converted_batch, registry.fetch_unconverted_batch):
        offset = 0
        while True:
            records = fetch(offset, PAGE_SIZE)
            if not records:
                break
            for r in records:
                locations = ';'.join(f"{loc.table}.{loc.column}" for loc in r.occurrences)
                writer.writerow([r.original_link, r.new_link or '', locations])
                written += 1
            offset += PAGE_SIZE
    return written


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    config = load_config(sys.argv[2] if len(sys.argv) > 2 else None)
    executor = get_executor(config.database)
    try:
        init_database(executor)
        with open(sys.argv[1], 'w', newline='', encoding='utf-8') as f:
            written = export(LinkRegistry(executor), f)
        print(f"Exported {written} links to {sys.argv[1]}")
    finally:
        executor.close()


if __name__ == '__main__':
    main()
