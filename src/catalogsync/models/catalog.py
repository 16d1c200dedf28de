"""Catalog index models: artists and songs, keyed by (tenant_id, remote_id)."""
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from catalogsync.models.sync import utcnow


class IndexedArtist(SQLModel, table=True):
    """One row per catalog artist seen by a sync pass."""

    __table_args__ = (
        UniqueConstraint("tenant_id", "remote_id", name="uq_indexedartist_tenant_remote"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    remote_id: str
    name: str = Field(index=True)
    album_count: int = 0
    song_count: int = 0
    genres: Optional[str] = None

    # Change detection
    checksum: Optional[str] = None
    synced_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False, index=True)
    )

    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))


class IndexedSong(SQLModel, table=True):
    """
    One row per catalog song. Denormalized so the index can be searched
    without joining back to artists or albums.
    """

    __table_args__ = (
        UniqueConstraint("tenant_id", "remote_id", name="uq_indexedsong_tenant_remote"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    remote_id: str

    title: str
    artist: str = Field(index=True)
    album: Optional[str] = None
    album_id: Optional[str] = None
    artist_id: Optional[str] = Field(default=None, index=True)
    duration: Optional[int] = None  # seconds
    track: Optional[int] = None
    genre: Optional[str] = None
    year: Optional[int] = None

    # "artist - title", lowercased, for search
    song_key: str = Field(index=True)

    checksum: Optional[str] = None
    synced_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False, index=True)
    )

    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
