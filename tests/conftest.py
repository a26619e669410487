import os
import sys
import json
import pytest
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from config import parse_config
from database import SQLiteExecutor, init_database

LINK_PREFIX = 'https://i.imgur.com/'

RAW_CONFIG = {
    'photoToken': 'photo-token',
    'videoToken': 'video-token',
    'requestsPerMinute': 30,
    'extensions': {
        'image': ['png', 'jpg', 'gif'],
        'video': ['mp4'],
    },
    'batchSize': 50,
}


class FakeResponse:
    def __init__(self, status_code=200, content=b'', headers=None, json_data=None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self._json_data = json_data

    def json(self):
        if self._json_data is None:
            raise ValueError('No JSON object could be decoded')
        return self._json_data


class FakeSession:
    """Stands in for requests.Session; answers from per-URL queues or defaults"""

    def __init__(self, uploaded_prefix='https://r2.fivemanage.com/'):
        self.uploaded_prefix = uploaded_prefix
        self.get_responses = {}
        self.post_responses = []
        self.gets = []
        self.posts = []

    def get(self, url, headers=None, timeout=None):
        self.gets.append({'url': url, 'headers': headers})
        if url in self.get_responses:
            return self.get_responses[url]
        return FakeResponse(200, content=b'media-bytes', headers={'Content-Type': 'image/png'})

    def post(self, url, headers=None, files=None, data=None, timeout=None):
        self.posts.append({'url': url, 'headers': headers, 'files': files, 'data': data})
        if self.post_responses:
            return self.post_responses.pop(0)
        field, (filename, _, _) = next(iter(files.items()))
        return FakeResponse(200, json_data={'url': f"{self.uploaded_prefix}{field}/{filename}"})


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def executor(tmp_path):
    ex = SQLiteExecutor(str(tmp_path / 'test_migrator.db'))
    init_database(ex)
    yield ex
    ex.close()


@pytest.fixture
def config():
    return parse_config(json.loads(json.dumps(RAW_CONFIG)))


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sleep():
    return RecordingSleep()


def create_table(executor, table, columns, rows=()):
    cols = ', '.join(f'"{c}" TEXT' for c in columns)
    executor.execute(f'CREATE TABLE "{table}" (id INTEGER PRIMARY KEY AUTOINCREMENT, {cols})')
    for row in rows:
        placeholders = ', '.join('?' for _ in columns)
        names = ', '.join(f'"{c}"' for c in columns)
        executor.execute(f'INSERT INTO "{table}" ({names}) VALUES ({placeholders})', row)


def column_values(executor, table, column):
    return [r['v'] for r in executor.query(f'SELECT "{column}" AS v FROM "{table}" ORDER BY id')]
