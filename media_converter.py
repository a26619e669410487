import json
import logging
from urllib.parse import urlparse

import requests

from errors import (DownloadFailed, InvalidLinkFormat, PersistenceError,
                    UnsupportedExtension, UploadFailed)

logger = logging.getLogger('migrator.converter')

# Old-host short identifiers are always this long
IDENTIFIER_LENGTH = 7

BROWSER_USER_AGENT = ('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
                      '(KHTML, like Gecko) Chrome/58.0.3029.110 Safari/537.3')

UPLOAD_MESSAGE = 'Converted to Fivemanage from Imgur'

# Seconds to wait for an upstream response
URL_FETCH_TIMEOUT = 30
UPLOAD_TIMEOUT = 120


class ConversionResult:
    """Outcome of converting one link: either new_link or error is set"""

    def __init__(self, link, new_link=None, error=None):
        self.link = link
        self.new_link = new_link
        self.error = error

    @property
    def ok(self):
        return self.error is None and self.new_link is not None

    @property
    def rate_limited(self):
        return getattr(self.error, 'rate_limited', False)

    @property
    def skipped(self):
        """Rejected before any network call"""
        return isinstance(self.error, (InvalidLinkFormat, UnsupportedExtension))

    @property
    def counts_as_failure(self):
        return self.error is not None and not self.skipped and not self.rate_limited

    def __repr__(self):
        if self.ok:
            return f"ConversionResult({self.link!r} -> {self.new_link!r})"
        return f"ConversionResult({self.link!r}, error={self.error!r})"


def split_filename(link):
    """Return (filename, identifier, extension) from the last path segment of a link"""
    path = urlparse(link).path
    filename = path.rstrip('/').split('/')[-1]
    parts = filename.split('.')
    identifier = parts[0]
    extension = parts[-1].lower() if len(parts) > 1 else ''
    return filename, identifier, extension


def _is_success(status):
    return 200 <= status < 300


class MediaConverter:
    def __init__(self, config, registry, replacer, session=None):
        self.config = config
        self.registry = registry
        self.replacer = replacer
        self.session = session or requests.Session()

    def validate(self, link):
        """Return (identifier, extension, kind); raises on a link that cannot be converted"""
        _, identifier, extension = split_filename(link)

        if len(identifier) != IDENTIFIER_LENGTH:
            raise InvalidLinkFormat(f"Invalid link {link}")

        kind = self.config.kind_for(extension)
        if kind is None:
            raise UnsupportedExtension(f"Unallowed extension {extension} for {link}")
        return identifier, extension, kind

    def download(self, link):
        """Fetch the media bytes; returns (content, content_type)"""
        headers = {'User-Agent': BROWSER_USER_AGENT}
        try:
            response = self.session.get(link, headers=headers, timeout=URL_FETCH_TIMEOUT)
        except requests.exceptions.RequestException as e:
            raise DownloadFailed(f"Failed to download {link}: {e}") from e

        if not _is_success(response.status_code):
            raise DownloadFailed(f"Failed to download {link}, status: {response.status_code}.",
                                 status=response.status_code)

        content_type = response.headers.get('Content-Type') or 'application/octet-stream'
        return response.content, content_type

    def upload(self, link, content, content_type, filename, kind):
        """Send the media to the new host; returns the URL it is served from"""
        url = f"{self.config.upload_base_url}/api/{kind.value}"
        metadata = json.dumps({'imgur': link, 'message': UPLOAD_MESSAGE})
        try:
            response = self.session.post(
                url,
                headers={'Authorization': self.config.token_for(kind)},
                files={kind.value: (filename, content, content_type)},
                data={'metadata': metadata},
                timeout=UPLOAD_TIMEOUT
            )
        except requests.exceptions.RequestException as e:
            raise UploadFailed(f"Failed to upload {link}: {e}") from e

        if response.status_code != 200:
            raise UploadFailed(f"Failed to upload {link}, status: {response.status_code}",
                               status=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise UploadFailed(f"Failed to upload {link} (invalid JSON from upload API)", status=200) from e

        new_link = body.get('url') if isinstance(body, dict) else None
        if not new_link or not isinstance(new_link, str):
            raise UploadFailed(f"Failed to upload {link} (no url from upload API)", status=200)
        return new_link

    def convert(self, record):
        """Convert one LinkRecord. Never raises for per-link problems."""
        link = record.original_link
        try:
            identifier, extension, kind = self.validate(link)
        except (InvalidLinkFormat, UnsupportedExtension) as e:
            logger.warning(f"{e}, skipping...")
            return ConversionResult(link, error=e)

        try:
            content, content_type = self.download(link)
            new_link = self.upload(link, content, content_type, f"{identifier}.{extension}", kind)
        except (DownloadFailed, UploadFailed) as e:
            if e.rate_limited:
                logger.warning(f"{e} Rate limited.")
            else:
                logger.error(str(e))
            return ConversionResult(link, error=e)

        try:
            if not self.registry.mark_converted(link, new_link):
                raise PersistenceError(f"{link} was already converted or is not registered, rows left unchanged")
            self.replacer.replace(link, new_link, record.occurrences)
        except PersistenceError as e:
            logger.error(f"Uploaded {link} to {new_link} but could not store it: {e}")
            return ConversionResult(link, error=e)

        logger.info(f"Replaced {link} with {new_link}")
        return ConversionResult(link, new_link=new_link)
