#!/usr/bin/env python3
"""Clear the scan-completed flag so the next migrator run scans the schema again.

Occurrence sets are only ever extended by a rescan, nothing is removed.

Usage: python scripts/reset_scan_state.py [config.json]
"""
import os
import sys
# Ensure project root is on sys.path so we can import local modules when running the script
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from config import load_config
from database import get_executor, init_database
from scan_state import ScanState


def main():
    config = load_config(sys.argv[1] if len(sys.argv) > 1 else None)
    executor = get_executor(config.database)
    try:
        init_database(executor)
        state = ScanState(executor)
        print(f"Scan completed flag was: {state.read()}")
        state.write(False)
        print('Scan completed flag cleared, the next run will rescan the schema.')
    finally:
        executor.close()


if __name__ == '__main__':
    main()
