"""Value types shared by the FIP extractor and the Tidal synchronizer."""

from enum import Enum
from typing import List, NamedTuple


# Track ID used when a search returned no results
NOT_FOUND = -1


class Track(NamedTuple):
    """A track as aired on the radio."""

    title: str
    artist: str
    album: str

    def __str__(self) -> str:
        return f"{self.title} by {self.artist}"


TrackList = List[Track]


class AppendState(Enum):
    """Progress of a single track append."""

    PENDING = "pending"
    TOKEN_REFRESHED = "token_refreshed"
    APPENDED = "appended"
    FAILED = "failed"


class PlaylistHandle:
    """A Tidal playlist being populated."""

    def __init__(self, uuid: str, last_updated: int):
        """
        Initialize playlist handle.

        Args:
            uuid: Tidal playlist UUID
            last_updated: Playlist's lastUpdated value as a millisecond Unix timestamp,
                          sent as the If-None-Match precondition on every mutation
        """
        self.uuid = uuid
        self.last_updated = last_updated
        self.tracks_added = 0
        self.state = AppendState.PENDING

    def __repr__(self) -> str:
        return (
            f"PlaylistHandle(uuid={self.uuid!r}, last_updated={self.last_updated}, "
            f"tracks_added={self.tracks_added}, state={self.state.value})"
        )
