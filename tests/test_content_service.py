import json
from datetime import datetime, timedelta

import pytest

from feednana.exceptions import NotFoundError, ValidationError
from feednana.models.database import Album, Comment, File, Timeline
from feednana.models.upload_models import AnonIdentity, BrowseFilter
from feednana.services.content_service import ContentService

ANON = AnonIdentity(anon_id="Zz99Yy88", anon_text_color="rgb(0, 0, 0)", anon_text_background="rgb(9, 9, 9)")
OWNER = {"anon_id": "Zz99Yy88", "anon_text_color": "rgb(0, 0, 0)", "anon_text_background": "rgb(9, 9, 9)"}


@pytest.fixture
def content(event_bus):
    return ContentService(event_bus)


def _file(db, **kwargs) -> File:
    values = dict(
        file_name="a.png",
        file_size=10,
        mime_type="image/png",
        hashed_file_name="abc.png",
        file_url="https://cdn.test/files/abc.png",
        **OWNER,
    )
    values.update(kwargs)
    file = File(**values)
    db.add(file)
    db.commit()
    return file


def test_karma_is_the_sum_of_votes(db, content):
    file = _file(db)
    for user_id, value in ((1, 1), (2, 1), (3, -1)):
        content.vote(db, user_id, "file", file.id, value)

    assert content.karma(db, "file", file.id) == 1
    assert content.file_out(db, file).karma == 1


def test_revote_replaces_and_zero_clears(db, content):
    file = _file(db)
    content.vote(db, 1, "file", file.id, 1)
    content.vote(db, 1, "file", file.id, -1)
    assert content.karma(db, "file", file.id) == -1
    assert content.user_vote(db, 1, "file", file.id) == -1

    content.vote(db, 1, "file", file.id, 0)
    assert content.karma(db, "file", file.id) == 0
    assert content.user_vote(db, 1, "file", file.id) is None


def test_vote_requires_login(db, content):
    file = _file(db)
    with pytest.raises(ValidationError, match="logged in"):
        content.vote(db, None, "file", file.id, 1)


@pytest.mark.parametrize("value", [2, -2, 10])
def test_vote_value_is_bounded(db, content, value):
    file = _file(db)
    with pytest.raises(ValidationError):
        content.vote(db, 1, "file", file.id, value)


def test_vote_on_removed_or_missing_content_fails(db, content):
    removed = _file(db, removed=True)
    with pytest.raises(ValidationError, match="does not exist"):
        content.vote(db, 1, "file", removed.id, 1)
    with pytest.raises(ValidationError):
        content.vote(db, 1, "album", 999, 1)
    with pytest.raises(ValidationError):
        content.vote(db, 1, "user", 1, 1)


def test_vote_publishes_file_update(db, content, redis_client):
    file = _file(db)
    pubsub = redis_client.pubsub(ignore_subscribe_messages=True)
    pubsub.subscribe("feednana:file_updated")

    content.vote(db, 1, "file", file.id, 1)

    payloads = [m for m in (pubsub.get_message() for _ in range(5)) if m]
    pubsub.close()
    assert json.loads(payloads[0]["data"])["karma"] == 1


def test_comment_count_ignores_removed(db, content):
    file = _file(db)
    content.create_comment(db, "file", file.id, "first", ANON)
    hidden = content.create_comment(db, "file", file.id, "second", ANON)
    hidden.removed = True
    db.commit()

    assert content.comment_count(db, "file", file.id) == 1
    assert content.file_out(db, file).comment_count == 1


def test_comment_carries_anon_identity(db, content):
    timeline = Timeline(**OWNER)
    db.add(timeline)
    db.commit()

    comment = content.create_comment(db, "timeline", timeline.id, "hello", ANON, user_id=4)
    reply = content.create_comment(db, "timeline", timeline.id, "hi back", ANON, replies_to=comment.id)

    assert comment.anon_id == ANON.anon_id
    assert comment.user_id == 4
    assert reply.replies_to == comment.id
    assert db.get(Comment, reply.id).text == "hi back"


def test_comment_length_is_limited(db, content):
    file = _file(db)
    content.create_comment(db, "file", file.id, "x" * 1000, ANON)
    with pytest.raises(ValidationError):
        content.create_comment(db, "file", file.id, "x" * 1001, ANON)


def test_comment_on_missing_content(db, content):
    with pytest.raises(NotFoundError, match="Album not found"):
        content.create_comment(db, "album", 42, "anyone?", ANON)
    with pytest.raises(ValidationError):
        content.create_comment(db, "comment", 1, "nested flavor", ANON)


def test_get_file_counts_views(db, content):
    file = _file(db)
    content.get_file(db, file.id)
    content.get_file(db, file.id)

    assert db.get(File, file.id).views == 2
    with pytest.raises(NotFoundError):
        content.get_file(db, 12345)


def test_album_out_lists_live_files(db, content):
    album = Album(name="set", **OWNER)
    db.add(album)
    db.commit()
    keep = _file(db, album_id=album.id)
    _file(db, album_id=album.id, removed=True)

    out = content.album_out(db, content.get_album(db, album.id))

    assert [f.id for f in out.files] == [keep.id]
    assert out.views == 1


def test_total_file_count_skips_removed_and_unlisted(db, content):
    _file(db)
    _file(db, removed=True)
    _file(db, unlisted=True)
    assert content.total_file_count(db) == 1


def _stamp(minutes: int) -> datetime:
    return datetime(2024, 1, 1) + timedelta(minutes=minutes)


def test_browse_lists_public_items_newest_first(db, content):
    album = Album(name="set", timestamp=_stamp(2), **OWNER)
    db.add(album)
    db.commit()
    _file(db, album_id=album.id, timestamp=_stamp(2))
    oldest = _file(db, timestamp=_stamp(1))
    newest = _file(db, timestamp=_stamp(3))
    _file(db, timestamp=_stamp(4), removed=True)
    _file(db, timestamp=_stamp(5), unlisted=True)

    result = content.browse(db)

    assert [(item.flavor, item.id) for item in result.items] == [
        ("file", newest.id),
        ("album", album.id),
        ("file", oldest.id),
    ]
    assert result.total == 3
    assert result.has_more is False


def test_browse_pages_across_kinds(db, content):
    for minute in range(5):
        _file(db, timestamp=_stamp(minute * 2))
        db.add(Album(name=f"a{minute}", timestamp=_stamp(minute * 2 + 1), **OWNER))
    db.commit()

    first = content.browse(db, page=1, limit=4)
    third = content.browse(db, page=3, limit=4)

    assert [i.timestamp for i in first.items] == [_stamp(m) for m in (9, 8, 7, 6)]
    assert first.has_more is True
    assert [i.timestamp for i in third.items] == [_stamp(1), _stamp(0)]
    assert third.has_more is False
    assert third.total == 10


def test_browse_filters_and_clamps(db, content):
    _file(db, timestamp=_stamp(0))
    db.add(Album(name="only", timestamp=_stamp(1), **OWNER))
    db.commit()

    assert [i.flavor for i in content.browse(db, filter=BrowseFilter.FILES).items] == ["file"]
    assert [i.flavor for i in content.browse(db, filter=BrowseFilter.ALBUMS).items] == ["album"]
    assert len(content.browse(db, page=0, limit=500).items) == 2
