"""
Catalog API response normalizer.

Converts raw dicts from the catalog API into clean field dicts that map
directly onto the IndexedArtist / IndexedSong columns. No DB access here;
the sync controller handles persistence.

The song endpoint returns two shapes depending on how it was queried:

  /api/song?album_id=...   items carry "name" and "track"
  search results           items carry "title" and "trackNumber"

Both are handled by normalize_song().
"""
from typing import Any, Dict, Optional

from catalogsync.catalog.errors import CatalogParseError

UNKNOWN_ARTIST = "Unknown Artist"


def _require_id(raw: Dict[str, Any], kind: str) -> str:
    if not isinstance(raw, dict):
        raise CatalogParseError(f"Expected {kind} object, got {type(raw).__name__}")
    remote_id = raw.get("id")
    if remote_id in (None, ""):
        raise CatalogParseError(f"{kind} payload has no id")
    return str(remote_id)


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _genres(value: Any) -> Optional[str]:
    """Genres arrive as a string or as a list of {"name": ...} objects."""
    if not value:
        return None
    if isinstance(value, list):
        names = [g.get("name") if isinstance(g, dict) else g for g in value]
        return ", ".join(str(n) for n in names if n) or None
    return str(value)


def song_key(artist: str, title: str) -> str:
    """Normalized "artist - title" search key."""
    return f"{artist.strip().lower()} - {title.strip().lower()}"


def normalize_artist(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map an /api/artist item onto IndexedArtist fields.

    Raises:
        CatalogParseError: if the item has no id or no name.
    """
    remote_id = _require_id(raw, "artist")
    name = raw.get("name")
    if not name:
        raise CatalogParseError(f"artist {remote_id} has no name")
    return {
        "remote_id": remote_id,
        "name": str(name),
        "album_count": _int_or_none(raw.get("albumCount")) or 0,
        "song_count": _int_or_none(raw.get("songCount")) or 0,
        "genres": _genres(raw.get("genres")),
    }


def normalize_album(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map an /api/album item onto the fields the controller needs."""
    remote_id = _require_id(raw, "album")
    return {
        "remote_id": remote_id,
        "name": raw.get("name") or "",
        "artist_id": raw.get("artistId"),
        "year": _int_or_none(raw.get("year")),
    }


def normalize_song(raw: Dict[str, Any], album_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Map an /api/song item onto IndexedSong fields (everything except
    tenant_id, checksum and the timestamps).

    Args:
        raw: Song item from the catalog.
        album_name: Fallback album name when the song item has none.

    Raises:
        CatalogParseError: if the item has no id or no title.
    """
    remote_id = _require_id(raw, "song")
    title = raw.get("title") or raw.get("name")
    if not title:
        raise CatalogParseError(f"song {remote_id} has no title")
    artist = raw.get("artist") or UNKNOWN_ARTIST
    track = raw.get("track")
    if track is None:
        track = raw.get("trackNumber")
    return {
        "remote_id": remote_id,
        "title": str(title),
        "artist": str(artist),
        "album": raw.get("album") or album_name,
        "album_id": raw.get("albumId"),
        "artist_id": raw.get("artistId"),
        "duration": _int_or_none(raw.get("duration")),
        "track": _int_or_none(track),
        "genre": raw.get("genre") or None,
        "year": _int_or_none(raw.get("year")),
        "song_key": song_key(str(artist), str(title)),
    }
