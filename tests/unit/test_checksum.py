"""Tests for change-detection fingerprints."""
import pytest

from catalogsync.sync.checksum import (
    NEW,
    SONG_FIELDS,
    UNCHANGED,
    UPDATED,
    artist_checksum,
    classify,
    song_checksum,
)

SONG = {
    "remote_id": "s1",
    "title": "Blue in Green",
    "artist": "Miles Davis",
    "album": "Kind of Blue",
    "duration": 337,
    "track": 3,
    "genre": "Jazz",
    "year": 1959,
    "album_id": "al1",
    "artist_id": "ar1",
    "song_key": "miles davis - blue in green",
}


class TestSongChecksum:
    def test_deterministic(self):
        assert song_checksum(SONG) == song_checksum(dict(SONG))

    def test_is_128_bit_hex(self):
        value = song_checksum(SONG)
        assert len(value) == 32
        int(value, 16)

    @pytest.mark.parametrize("field", SONG_FIELDS)
    def test_every_tracked_field_changes_checksum(self, field):
        changed = dict(SONG)
        changed[field] = "something else"
        assert song_checksum(changed) != song_checksum(SONG)

    @pytest.mark.parametrize("field", ["album_id", "artist_id", "song_key"])
    def test_untracked_fields_ignored(self, field):
        changed = dict(SONG)
        changed[field] = "different"
        assert song_checksum(changed) == song_checksum(SONG)

    def test_none_and_missing_are_equal(self):
        without_genre = {k: v for k, v in SONG.items() if k != "genre"}
        assert song_checksum(without_genre) == song_checksum({**SONG, "genre": None})


class TestArtistChecksum:
    def test_song_count_change_detected(self):
        artist = {"remote_id": "ar1", "name": "Miles Davis", "album_count": 2, "song_count": 20}
        assert artist_checksum(artist) != artist_checksum({**artist, "song_count": 21})

    def test_deterministic(self):
        artist = {"remote_id": "ar1", "name": "Miles Davis"}
        assert artist_checksum(artist) == artist_checksum(dict(artist))


class TestClassify:
    def test_missing_row_is_new(self):
        assert classify(None, "abc", exists=False) == NEW

    def test_same_checksum_is_unchanged(self):
        assert classify("abc", "abc", exists=True) == UNCHANGED

    def test_different_checksum_is_updated(self):
        assert classify("abc", "def", exists=True) == UPDATED

    def test_row_without_checksum_is_updated(self):
        assert classify(None, "abc", exists=True) == UPDATED
