import os
import json
from enum import Enum
from types import MappingProxyType

from errors import ConfigurationError

CONFIG_PATH = os.environ.get('MIGRATOR_CONFIG', 'config.json')

# Only direct image links on the old host are migrated
DEFAULT_LINK_PREFIX = 'https://i.imgur.com/'
DEFAULT_UPLOAD_BASE_URL = 'https://api.fivemanage.com'

# Unconverted links fetched per run
DEFAULT_BATCH_SIZE = 50


class MediaKind(Enum):
    IMAGE = 'image'
    VIDEO = 'video'


class MigratorConfig:
    def __init__(self, photo_token, video_token, requests_per_minute, extension_kinds,
                 link_prefix=DEFAULT_LINK_PREFIX, upload_base_url=DEFAULT_UPLOAD_BASE_URL,
                 batch_size=DEFAULT_BATCH_SIZE, database=None):
        self.photo_token = photo_token
        self.video_token = video_token
        self.requests_per_minute = requests_per_minute
        self.extension_kinds = MappingProxyType(dict(extension_kinds))
        self.link_prefix = link_prefix
        self.upload_base_url = upload_base_url.rstrip('/')
        self.batch_size = batch_size
        self.database = dict(database or {})

    def kind_for(self, extension):
        """Media kind for a file extension, or None when it is not allowed"""
        return self.extension_kinds.get(normalize_extension(extension))

    def token_for(self, kind):
        return self.video_token if kind is MediaKind.VIDEO else self.photo_token


def normalize_extension(extension):
    return (extension or '').strip().lstrip('.').lower()


def _require_token(raw, key):
    token = raw.get(key)
    if not isinstance(token, str) or not token.strip():
        raise ConfigurationError(f"Missing '{key}' in configuration")
    return token.strip()


def _extension_lookup(extensions):
    if not isinstance(extensions, dict):
        raise ConfigurationError("'extensions' must be an object with 'image' and 'video' lists")

    lookup = {}
    for kind in MediaKind:
        values = extensions.get(kind.value, [])
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise ConfigurationError(f"'extensions.{kind.value}' must be a list of strings")
        for value in values:
            ext = normalize_extension(value)
            if not ext:
                continue
            if ext in lookup and lookup[ext] is not kind:
                raise ConfigurationError(f"Extension '{ext}' is listed for both image and video")
            lookup[ext] = kind
    return lookup


def parse_config(raw):
    """Validate a decoded config.json document and build a MigratorConfig"""
    if not isinstance(raw, dict):
        raise ConfigurationError('Configuration must be a JSON object')

    rpm = raw.get('requestsPerMinute')
    # bool is an int subclass
    if isinstance(rpm, bool) or not isinstance(rpm, int) or rpm <= 0:
        raise ConfigurationError("'requestsPerMinute' must be a positive integer")

    batch_size = raw.get('batchSize', DEFAULT_BATCH_SIZE)
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
        raise ConfigurationError("'batchSize' must be a positive integer")

    database = raw.get('database', {})
    if not isinstance(database, dict):
        raise ConfigurationError("'database' must be an object")

    return MigratorConfig(
        photo_token=_require_token(raw, 'photoToken'),
        video_token=_require_token(raw, 'videoToken'),
        requests_per_minute=rpm,
        extension_kinds=_extension_lookup(raw.get('extensions')),
        link_prefix=raw.get('linkPrefix') or DEFAULT_LINK_PREFIX,
        upload_base_url=raw.get('uploadBaseUrl') or DEFAULT_UPLOAD_BASE_URL,
        batch_size=batch_size,
        database=database,
    )


def load_config(path=None):
    path = path or CONFIG_PATH
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Failed to load {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    return parse_config(raw)
