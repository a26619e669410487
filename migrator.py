import os
import sys
import time
import signal
import logging
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path

from config import load_config
from database import get_executor, init_database
from errors import ConfigurationError, PersistenceError, SchemaIntrospectionFailure
from link_registry import LinkRegistry
from link_replacer import LinkReplacer
from media_converter import MediaConverter
from rate_limiter import RateLimiter
from scan_state import ScanState
from schema_scanner import SchemaScanner

LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s'
logger = logging.getLogger('migrator')
logger.setLevel(logging.INFO)


def log_file_path():
    """migrator.log in MIGRATOR_LOG_DIR, or in logs/ under the working directory"""
    log_dir = os.environ.get('MIGRATOR_LOG_DIR') or os.path.join(os.getcwd(), 'logs')
    return Path(log_dir) / 'migrator.log'


def setup_logging():
    """Attach the rotating log file and the console to the migrator logger"""
    log_file = log_file_path()
    log_file.parent.mkdir(parents=True, exist_ok=True)
    # 3 MB = 3145728 bytes
    fh = RotatingFileHandler(log_file, maxBytes=3145728, backupCount=4)
    fh.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(fh)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console)
    return log_file


class MigrationState(Enum):
    NOT_SCANNED = 'not_scanned'
    SCANNING = 'scanning'
    SCANNED = 'scanned'
    CONVERTING = 'converting'
    DONE = 'done'


class MediaMigrator:
    """Scan once, then convert one batch of unconverted links per run"""

    def __init__(self, config, executor, scan_state=None, session=None, sleep=None):
        self.config = config
        self.executor = executor
        self.registry = LinkRegistry(executor)
        self.scanner = SchemaScanner(executor, self.registry, config.link_prefix)
        self.replacer = LinkReplacer(executor)
        self.converter = MediaConverter(config, self.registry, self.replacer, session=session)
        self.rate_limiter = RateLimiter(config.requests_per_minute, sleep=sleep or time.sleep)
        self.scan_state = scan_state or ScanState(executor)

        self.state = MigrationState.NOT_SCANNED
        self.converted = 0
        self.failed = 0
        self.rate_limited = 0
        self.skipped = 0

    def start(self):
        """Check the database and the persisted flag; decides whether to scan"""
        db_name = self.scanner.current_database()
        logger.info(f"Using database: {db_name}")

        if self.scan_state.read():
            self.state = MigrationState.SCANNED
        else:
            self.state = MigrationState.NOT_SCANNED
        return self.state

    def scan(self):
        self.state = MigrationState.SCANNING
        stats = self.scanner.scan()

        if stats['failed_columns']:
            logger.warning(
                f"{len(stats['failed_columns'])} columns could not be scanned, "
                "the scan will be repeated on the next run"
            )
        else:
            self.scan_state.write(True)

        self.state = MigrationState.SCANNED
        return stats

    def convert_batch(self):
        """Convert one page of unconverted links, then finish"""
        total = self.registry.count_total()
        remaining = self.registry.count_unconverted()
        logger.info(f"Total unique links in database: {total}")
        logger.info(f"Links left to convert: {remaining}")

        if remaining == 0:
            self.state = MigrationState.DONE
            return []

        self.state = MigrationState.CONVERTING
        offset = 0
        results = []

        # One bounded batch per invocation; later runs pick up the rest
        batch = self.registry.fetch_unconverted_batch(offset, self.config.batch_size)
        for record in batch:
            result = self.converter.convert(record)
            results.append(result)

            if result.skipped:
                self.skipped += 1
                continue
            if result.rate_limited:
                self.rate_limited += 1
                self.rate_limiter.cooldown()
                continue

            if result.ok:
                self.converted += 1
            elif result.counts_as_failure:
                self.failed += 1
            self.rate_limiter.wait()

        self.state = MigrationState.DONE
        return results

    def report(self):
        remaining = self.registry.count_unconverted()
        converted_total = self.registry.count_total() - remaining
        logger.info(
            f"Converted {self.converted} links this run ({converted_total} in total), "
            f"{remaining} left, {self.failed} failed, {self.skipped} skipped"
        )

        if self.failed == 0 and remaining == 0:
            logger.info('All links have been converted.')
        elif self.failed == 0 and remaining == self.skipped:
            # Skipped links were rejected without a network call and stay unconverted
            logger.info(f"All convertible links have been converted, {remaining} links were skipped "
                        "because of an invalid identifier or extension.")
        elif self.failed == 0:
            logger.info(f"Batch finished, {remaining} links are still unconverted "
                        f"({self.skipped} skipped in this batch). Run again to continue.")
        else:
            logger.error(f"Failed to upload {self.failed} links, try restarting the script in a while.")

        return {
            'converted': self.converted,
            'converted_total': converted_total,
            'remaining': remaining,
            'failed': self.failed,
            'rate_limited': self.rate_limited,
            'skipped': self.skipped,
        }

    def run(self):
        if self.start() is MigrationState.NOT_SCANNED:
            self.scan()
        self.convert_batch()
        return self.report()


def signal_handler(sig, frame):
    """Handle shutdown signals"""
    logger.info('Migrator shutting down, converted links are kept and the rest resume on the next run...')
    sys.exit(0)


def migrate(config_path=None):
    """Load the configuration, open the database and run once. Returns the summary, or None when the run aborted."""
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return None

    try:
        executor = get_executor(config.database)
    except (ConfigurationError, PersistenceError) as e:
        logger.error(f"Could not open database: {e}")
        return None

    try:
        init_database(executor)
        return MediaMigrator(config, executor).run()
    except SchemaIntrospectionFailure as e:
        logger.error(str(e))
    except PersistenceError as e:
        logger.error(f"Database error, aborting run: {e}")
    finally:
        executor.close()
    return None


def main():
    setup_logging()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    migrate(sys.argv[1] if len(sys.argv) > 1 else None)


if __name__ == '__main__':
    main()
