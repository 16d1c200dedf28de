"""Shared test fixtures."""
import asyncio
from typing import Dict, List

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from catalogsync.models.catalog import IndexedArtist, IndexedSong  # noqa: F401
from catalogsync.models.sync import SyncErrorLog, SyncState  # noqa: F401
from catalogsync.sync.types import SyncConfig


class FakeCatalog:
    """
    In-memory catalog with the CatalogClient listing interface.

    Every artist has one album. Tracks call counts and the peak number of
    concurrently running album listings.
    """

    def __init__(self, artists: int = 3, songs_per_artist: int = 5, delay: float = 0.0):
        self.artists: List[dict] = []
        self.albums: Dict[str, List[dict]] = {}
        self.songs: Dict[str, List[dict]] = {}
        self.delay = delay
        self.artist_error = None
        self.album_errors: Dict[str, Exception] = {}
        self.calls = {"artists": 0, "albums": 0, "songs": 0}
        self.in_flight = 0
        self.max_in_flight = 0
        for n in range(1, artists + 1):
            self.add_artist(f"ar{n}", f"Artist {n}", songs_per_artist)

    def add_artist(self, artist_id: str, name: str, song_count: int) -> None:
        album_id = f"{artist_id}-al1"
        self.artists.append(
            {"id": artist_id, "name": name, "albumCount": 1, "songCount": song_count}
        )
        self.albums[artist_id] = [{"id": album_id, "name": f"{name} LP", "artistId": artist_id}]
        self.songs[album_id] = [
            {
                "id": f"{album_id}-s{n}",
                "title": f"Song {n}",
                "artist": name,
                "album": f"{name} LP",
                "albumId": album_id,
                "artistId": artist_id,
                "duration": 180 + n,
                "track": n,
            }
            for n in range(1, song_count + 1)
        ]

    def song(self, song_id: str) -> dict:
        album_id = song_id.rsplit("-", 1)[0]
        return next(s for s in self.songs[album_id] if s["id"] == song_id)

    def remove_song(self, song_id: str) -> None:
        album_id = song_id.rsplit("-", 1)[0]
        self.songs[album_id] = [s for s in self.songs[album_id] if s["id"] != song_id]

    async def list_artists(self, offset: int = 0, limit: int = 50) -> List[dict]:
        self.calls["artists"] += 1
        await asyncio.sleep(0)
        if self.artist_error is not None:
            raise self.artist_error
        return [dict(a) for a in self.artists[offset:offset + limit]]

    async def list_albums(self, artist_id: str, offset: int = 0, limit: int = 20) -> List[dict]:
        self.calls["albums"] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if artist_id in self.album_errors:
                raise self.album_errors[artist_id]
            return [dict(a) for a in self.albums.get(artist_id, [])[offset:offset + limit]]
        finally:
            self.in_flight -= 1

    async def list_songs(self, album_id: str, offset: int = 0, limit: int = 50) -> List[dict]:
        self.calls["songs"] += 1
        await asyncio.sleep(0)
        return [dict(s) for s in self.songs.get(album_id, [])[offset:offset + limit]]


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine):
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="catalog")
def catalog_fixture() -> FakeCatalog:
    """3 artists with 5 songs each."""
    return FakeCatalog()


@pytest.fixture(name="sync_config")
def sync_config_fixture() -> SyncConfig:
    """Default run configuration without the inter-batch delay."""
    return SyncConfig(batch_delay_ms=0)


@pytest.fixture(name="make_catalog")
def make_catalog_fixture():
    """Factory for FakeCatalogs of a custom shape."""
    return FakeCatalog
