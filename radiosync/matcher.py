"""Resolve aired tracks to Tidal track IDs."""

from typing import Dict, Iterable, List, Optional
from rapidfuzz import fuzz
from radiosync.models import NOT_FOUND, Track, TrackList
from radiosync.tidal_client import TidalClient
from radiosync.utils.logger import get_logger


logger = get_logger()


class MatchResult:
    """Result of a track search."""

    def __init__(self, track: Track, tidal_track: Dict, score: float):
        """
        Initialize match result.

        Args:
            track: Track as aired
            tidal_track: Tidal track dictionary from TidalClient.search_track
            score: Similarity between the two (0-100)
        """
        self.track = track
        self.tidal_track = tidal_track
        self.score = score

    @property
    def track_id(self) -> int:
        return self.tidal_track['id']

    def __repr__(self) -> str:
        return f"MatchResult(id={self.track_id}, score={self.score:.2f})"


class TrackMatcher:
    """
    Matcher taking the first Tidal search result for each track.

    The first result is always used. Its similarity score only flags matches
    that are likely wrong.
    """

    LOW_CONFIDENCE_SCORE = 60

    def __init__(self, tidal_client: TidalClient):
        """
        Initialize track matcher.

        Args:
            tidal_client: Tidal client with a valid token
        """
        self.tidal_client = tidal_client
        self.missing: List[Track] = []
        self.low_confidence: List[MatchResult] = []

    def match_track(self, track: Track) -> Optional[MatchResult]:
        """
        Search Tidal for a track.

        Returns:
            MatchResult, or None if the search has no results

        Raises:
            SyncError: If the search request fails
        """
        tidal_track = self.tidal_client.search_track(track.title, track.artist)

        if not tidal_track:
            logger.warning(f"No match found for: {track}")
            return None

        result = MatchResult(track, tidal_track, self.score(track, tidal_track))

        if self.is_low_confidence(result):
            logger.warning(
                f"Low confidence match (score={result.score:.2f}): {track} "
                f"-> {tidal_track['title']} by {tidal_track['artist']}"
            )
        else:
            logger.debug(
                f"Match (score={result.score:.2f}): {track} "
                f"-> {tidal_track['title']} by {tidal_track['artist']}"
            )

        return result

    def resolve(self, tracks: TrackList) -> List[int]:
        """
        Resolve every track to a Tidal ID.

        Returns:
            One ID per track, in order, NOT_FOUND where the search had no results.
            Tracks not found and low confidence matches are kept in
            self.missing and self.low_confidence.

        Raises:
            SyncError: If any search request fails
        """
        track_ids = []
        for i, track in enumerate(tracks, 1):
            logger.info(f"Searching for track {i}/{len(tracks)}: {track}")
            result = self.match_track(track)
            if result is None:
                self.missing.append(track)
                track_ids.append(NOT_FOUND)
                continue
            if self.is_low_confidence(result):
                self.low_confidence.append(result)
            track_ids.append(result.track_id)
        return track_ids

    def is_low_confidence(self, result: MatchResult) -> bool:
        return result.score < self.LOW_CONFIDENCE_SCORE

    @classmethod
    def score(cls, track: Track, tidal_track: Dict) -> float:
        """Weighted title/artist similarity between an aired track and a Tidal track."""
        title_score = fuzz.ratio(
            cls._normalize_string(track.title),
            cls._normalize_string(tidal_track['title'])
        )
        artist_score = fuzz.ratio(
            cls._normalize_string(track.artist),
            cls._normalize_string(tidal_track['artist'])
        )
        return (title_score * 0.6) + (artist_score * 0.4)

    @staticmethod
    def _normalize_string(s: str) -> str:
        return s.lower().strip()


def unique_track_ids(track_ids: Iterable[int]) -> List[int]:
    """
    Drop NOT_FOUND and repeated IDs, keeping the first occurrence order.

    >>> unique_track_ids([666, 42, 666, -1, 1337])
    [666, 42, 1337]
    """
    seen = set()
    unique = []
    for track_id in track_ids:
        if track_id == NOT_FOUND or track_id in seen:
            continue
        seen.add(track_id)
        unique.append(track_id)
    return unique
