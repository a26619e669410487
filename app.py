from flask import Flask, jsonify, request
import os

from config import load_config
from database import get_executor, init_database
from errors import ConfigurationError, PersistenceError
from link_registry import LinkRegistry
from scan_state import ScanState

app = Flask(__name__)

MAX_PAGE_SIZE = 500


def _database_settings():
    """Database section of config.json, or defaults when the file is absent"""
    try:
        return load_config().database
    except ConfigurationError as e:
        # Only a missing or unreadable file falls back to the defaults
        if isinstance(e.__cause__, OSError):
            return {}
        raise


def open_executor():
    settings = app.config.get('DATABASE_SETTINGS')
    if settings is None:
        settings = _database_settings()
    executor = get_executor(settings)
    init_database(executor)
    return executor


def record_to_dict(record):
    return {
        'original_link': record.original_link,
        'new_link': record.new_link,
        'occurrences': [{'table': loc.table, 'column': loc.column} for loc in record.occurrences]
    }


@app.errorhandler(PersistenceError)
def handle_persistence_error(e):
    return jsonify({'status': 'error', 'message': str(e)}), 500


@app.errorhandler(ConfigurationError)
def handle_configuration_error(e):
    app.logger.error(f"Configuration error: {e}")
    return jsonify({'status': 'error', 'message': f"Configuration error: {e}"}), 500


@app.route('/api/stats', methods=['GET'])
def get_stats():
    """Registry counts and whether the schema scan has run"""
    executor = open_executor()
    try:
        registry = LinkRegistry(executor)
        total = registry.count_total()
        unconverted = registry.count_unconverted()
        return jsonify({
            'total': total,
            'converted': total - unconverted,
            'unconverted': unconverted,
            'scanned': ScanState(executor).read()
        })
    finally:
        executor.close()


@app.route('/api/links', methods=['GET'])
def list_links():
    status = request.args.get('status', 'unconverted')
    if status not in ('unconverted', 'converted'):
        return jsonify({'status': 'error', 'message': "status must be 'unconverted' or 'converted'"}), 400
    try:
        limit = min(int(request.args.get('limit', 50)), MAX_PAGE_SIZE)
        offset = int(request.args.get('offset', 0))
    except ValueError:
        return jsonify({'status': 'error', 'message': 'limit and offset must be integers'}), 400
    if limit <= 0 or offset < 0:
        return jsonify({'status': 'error', 'message': 'limit must be positive and offset not negative'}), 400

    executor = open_executor()
    try:
        registry = LinkRegistry(executor)
        if status == 'converted':
            records = registry.fetch_converted_batch(offset, limit)
        else:
            records = registry.fetch_unconverted_batch(offset, limit)
        return jsonify({
            'links': [record_to_dict(r) for r in records],
            'limit': limit,
            'offset': offset
        })
    finally:
        executor.close()


@app.route('/api/links/lookup', methods=['GET'])
def lookup_link():
    url = (request.args.get('url') or '').strip()
    if not url:
        return jsonify({'status': 'error', 'message': 'url required'}), 400

    executor = open_executor()
    try:
        record = LinkRegistry(executor).get(url)
    finally:
        executor.close()

    if record is None:
        return jsonify({'status': 'error', 'message': 'link not registered'}), 404
    return jsonify(record_to_dict(record))


@app.route('/api/scan-state/reset', methods=['POST'])
def reset_scan_state():
    """Force a schema scan on the next migrator run"""
    executor = open_executor()
    try:
        ScanState(executor).write(False)
        return jsonify({'status': 'ok'})
    finally:
        executor.close()


if __name__ == '__main__':
    app.run(debug=False, host='0.0.0.0', port=int(os.environ.get('MIGRATOR_DASHBOARD_PORT', 5500)), threaded=True)
