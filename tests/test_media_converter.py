import json
import pytest
import requests
from conftest import FakeResponse, create_table, column_values
from errors import (DownloadFailed, InvalidLinkFormat, PersistenceError,
                    UnsupportedExtension, UploadFailed)
from link_registry import LinkRecord, LinkRegistry, Location
from link_replacer import LinkReplacer
from media_converter import BROWSER_USER_AGENT, MediaConverter, split_filename

LINK = 'https://i.imgur.com/abcdefg.png'


@pytest.fixture
def registry(executor):
    return LinkRegistry(executor)


@pytest.fixture
def converter(config, registry, executor, session):
    return MediaConverter(config, registry, LinkReplacer(executor), session=session)


def register(registry, link, *locations):
    for loc in locations:
        registry.register_sighting(link, loc)
    registry.flush_occurrences()
    return registry.get(link)


def test_split_filename():
    assert split_filename(LINK) == ('abcdefg.png', 'abcdefg', 'png')
    assert split_filename('https://i.imgur.com/abcdefg.JPG?1') == ('abcdefg.JPG', 'abcdefg', 'jpg')
    assert split_filename('https://i.imgur.com/abcdefg') == ('abcdefg', 'abcdefg', '')


def test_full_conversion_updates_registry_and_rows(executor, registry, converter, session):
    create_table(executor, 'users', ['avatar'], [(LINK,), ('https://example.com/me.png',)])
    create_table(executor, 'posts', ['body'], [(f'look at {LINK} !',)])
    record = register(registry, LINK, Location('users', 'avatar'), Location('posts', 'body'))

    result = converter.convert(record)

    new_link = 'https://r2.fivemanage.com/image/abcdefg.png'
    assert result.ok and result.new_link == new_link
    assert registry.get(LINK).new_link == new_link
    assert column_values(executor, 'users', 'avatar') == [new_link, 'https://example.com/me.png']
    assert column_values(executor, 'posts', 'body') == [f'look at {new_link} !']


def test_download_and_upload_requests(converter, registry, session):
    record = register(registry, LINK, Location('users', 'avatar'))

    converter.convert(record)

    assert session.gets[0]['url'] == LINK
    assert session.gets[0]['headers']['User-Agent'] == BROWSER_USER_AGENT
    post = session.posts[0]
    assert post['url'] == 'https://api.fivemanage.com/api/image'
    assert post['headers'] == {'Authorization': 'photo-token'}
    assert post['files'] == {'image': ('abcdefg.png', b'media-bytes', 'image/png')}
    assert json.loads(post['data']['metadata']) == {
        'imgur': LINK, 'message': 'Converted to Fivemanage from Imgur'
    }


def test_video_uses_video_endpoint_and_token(executor, converter, registry, session):
    link = 'https://i.imgur.com/vvvvvvv.mp4'
    create_table(executor, 'clips', ['url'], [(link,)])
    record = register(registry, link, Location('clips', 'url'))

    result = converter.convert(record)

    assert result.ok
    assert session.posts[0]['url'] == 'https://api.fivemanage.com/api/video'
    assert session.posts[0]['headers'] == {'Authorization': 'video-token'}


def test_identifier_of_wrong_length_is_skipped(converter, registry, session):
    link = 'https://i.imgur.com/abcde.png'
    record = register(registry, link, Location('t', 'c'))

    result = converter.convert(record)

    assert isinstance(result.error, InvalidLinkFormat)
    assert result.skipped and not result.counts_as_failure
    assert session.gets == []
    assert registry.get(link).new_link is None


def test_unlisted_extension_is_skipped(converter, registry, session):
    link = 'https://i.imgur.com/abcdefg.bmp'
    record = register(registry, link, Location('t', 'c'))

    result = converter.convert(record)

    assert isinstance(result.error, UnsupportedExtension)
    assert not result.counts_as_failure
    assert session.gets == []
    assert registry.get(link).new_link is None


def test_download_failure_counts(converter, registry, session):
    session.get_responses[LINK] = FakeResponse(404)
    result = converter.convert(register(registry, LINK, Location('t', 'c')))

    assert isinstance(result.error, DownloadFailed)
    assert result.error.status == 404
    assert result.counts_as_failure
    assert session.posts == []


def test_download_rate_limit_is_not_a_failure(converter, registry, session):
    session.get_responses[LINK] = FakeResponse(429)
    result = converter.convert(register(registry, LINK, Location('t', 'c')))

    assert result.rate_limited
    assert not result.counts_as_failure
    assert registry.get(LINK).new_link is None


def test_upload_rate_limit_is_not_a_failure(converter, registry, session):
    session.post_responses.append(FakeResponse(429))
    result = converter.convert(register(registry, LINK, Location('t', 'c')))

    assert isinstance(result.error, UploadFailed)
    assert result.rate_limited


@pytest.mark.parametrize('response', [
    FakeResponse(500),
    FakeResponse(201, json_data={'url': 'https://r2.fivemanage.com/x.png'}),
    FakeResponse(200, json_data={'message': 'ok'}),
    FakeResponse(200),
])
def test_bad_upload_responses(converter, registry, session, response):
    session.post_responses.append(response)
    result = converter.convert(register(registry, LINK, Location('t', 'c')))

    assert isinstance(result.error, UploadFailed)
    assert result.counts_as_failure
    assert registry.get(LINK).new_link is None


def test_network_errors_become_download_failures(converter, registry, session, monkeypatch):
    def boom(*args, **kwargs):
        raise requests.exceptions.ConnectionError('connection refused')

    monkeypatch.setattr(session, 'get', boom)
    result = converter.convert(register(registry, LINK, Location('t', 'c')))

    assert isinstance(result.error, DownloadFailed)
    assert result.error.status is None
    assert result.counts_as_failure


def test_persistence_failure_is_reported(converter, registry, monkeypatch):
    record = register(registry, LINK, Location('t', 'c'))

    def broken(link, new_link):
        raise PersistenceError('disk full')

    monkeypatch.setattr(registry, 'mark_converted', broken)
    result = converter.convert(record)

    assert isinstance(result.error, PersistenceError)
    assert result.counts_as_failure


def test_stale_record_does_not_rewrite_rows(executor, converter, registry):
    create_table(executor, 'users', ['avatar'], [('https://stored.example/x.png',), (LINK,)])
    stale = register(registry, LINK, Location('users', 'avatar'))
    registry.mark_converted(LINK, 'https://stored.example/x.png')

    result = converter.convert(stale)

    assert isinstance(result.error, PersistenceError)
    assert result.counts_as_failure
    assert registry.get(LINK).new_link == 'https://stored.example/x.png'
    assert column_values(executor, 'users', 'avatar') == ['https://stored.example/x.png', LINK]


def test_record_without_occurrences_still_converts(converter, registry):
    registry.register_sighting(LINK, Location('t', 'c'))
    record = LinkRecord(LINK, None, [])

    assert converter.convert(record).ok
