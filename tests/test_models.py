from datetime import datetime, timezone

import pytest

from forum_watcher.models import ForumItem, parse_timestamp


def test_parse_timestamp_formats():
    expected = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert parse_timestamp('2025-01-02T03:04:05Z') == expected
    assert parse_timestamp('2025-01-02T03:04:05') == expected
    assert parse_timestamp(expected.timestamp()) == expected
    assert parse_timestamp(expected.timestamp() * 1000) == expected
    assert parse_timestamp(datetime(2025, 1, 2, 3, 4, 5)) == expected


@pytest.mark.parametrize('value', [None, '', 'yesterday', [], True])
def test_parse_timestamp_rejects_garbage(value):
    assert parse_timestamp(value) is None


def test_thread_payload():
    thread = ForumItem(url='https://f.test/ideas/1', title='Logo', description='More logos', why='Must hit: logo')
    assert thread.to_dict() == {
        'url': 'https://f.test/ideas/1', 'title': 'Logo', 'description': 'More logos', 'why': 'Must hit: logo',
    }
    assert thread.match_text == 'Logo More logos'


def test_comment_payload_round_trip():
    posted = datetime(2025, 6, 1, tzinfo=timezone.utc)
    comment = ForumItem(
        url='https://f.test/ideas/1#c1', body='Yes please', thread_title='Logo',
        thread_url='https://f.test/ideas/1', timestamp=posted,
    )
    payload = comment.to_dict()
    assert payload['threadTitle'] == 'Logo'
    assert payload['timestamp'] == '2025-06-01T00:00:00+00:00'
    assert 'title' not in payload

    restored = ForumItem.from_dict(payload)
    assert restored.thread_url == comment.thread_url
    assert restored.timestamp == posted


def test_from_dict_requires_url():
    with pytest.raises(ValueError):
        ForumItem.from_dict({'title': 'No url'})
