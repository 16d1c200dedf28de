"""
Change-detection fingerprints for indexed artists and songs.

A fingerprint covers an explicit list of tracked fields, joined with "|" and
hashed with 128-bit BLAKE2b. Equal tracked fields give equal fingerprints;
fields outside the list (paths, play counts, album/artist ids) never affect
it. Only equality matters, so a non-cryptographic-strength use of the hash is
fine, but 128 bits keeps "false unchanged" collisions out of reach in
practice.
"""
import hashlib
from typing import Any, Dict, Optional

ARTIST_FIELDS = ("remote_id", "name", "album_count", "song_count", "genres")
SONG_FIELDS = ("remote_id", "title", "artist", "album", "duration", "track", "genre", "year")

NEW = "new"
UPDATED = "updated"
UNCHANGED = "unchanged"


def _fingerprint(fields: Dict[str, Any], tracked) -> str:
    parts = []
    for name in tracked:
        value = fields.get(name)
        parts.append("" if value is None else str(value))
    data = "|".join(parts).encode("utf-8")
    return hashlib.blake2b(data, digest_size=16).hexdigest()


def artist_checksum(fields: Dict[str, Any]) -> str:
    """Fingerprint of a normalized artist (see normalizer.normalize_artist)."""
    return _fingerprint(fields, ARTIST_FIELDS)


def song_checksum(fields: Dict[str, Any]) -> str:
    """Fingerprint of a normalized song (see normalizer.normalize_song)."""
    return _fingerprint(fields, SONG_FIELDS)


def classify(stored: Optional[str], fresh: str, *, exists: bool) -> str:
    """
    Decide what a sync pass should do with one item.

    Args:
        stored: Checksum currently in the index (None if absent or never set).
        fresh: Checksum of the item as just fetched.
        exists: Whether the index already has a row for the item.

    Returns:
        NEW, UPDATED or UNCHANGED.
    """
    if not exists:
        return NEW
    if stored != fresh:
        return UPDATED
    return UNCHANGED
