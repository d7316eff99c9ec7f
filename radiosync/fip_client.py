"""
FIP history client.

FIP (Radio France) serves its play history through a persisted GraphQL query.
Each request returns at most 100 tracks played since the `after` cursor, which
is the base64-encoded Unix timestamp of the page boundary. Longer histories are
assembled by chaining requests on the `endCursor` of the previous page.
"""

import base64
import binascii
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
import requests
from radiosync.errors import DecodeError, EmptyResultError, ProtocolError, TransportError
from radiosync.models import Track, TrackList
from radiosync.utils.logger import get_logger


logger = get_logger()


STATION_IDS = {
    "fip": 7,
    "fipRock": 64,
    "fipJazz": 65,
    "fipGroove": 66,
    "fipPop": 78,
    "fipElectro": 74,
    "fipMonde": 69,
    "fipReggae": 71,
    "fipToutNouveau": 70,
}


def encode_cursor(timestamp: int) -> str:
    """Encode a Unix timestamp (seconds) as a FIP pagination cursor."""
    return base64.b64encode(str(timestamp).encode("ascii")).decode("ascii")


def decode_cursor(cursor: str) -> int:
    """
    Decode a FIP pagination cursor back to a Unix timestamp.

    Raises:
        DecodeError: If the cursor is not base64 or does not hold an integer
    """
    try:
        return int(base64.b64decode(cursor, validate=True).decode("ascii"))
    except (binascii.Error, UnicodeDecodeError, ValueError, TypeError) as e:
        raise DecodeError(f"Invalid FIP cursor {cursor!r}: {e}")


class FipClient:
    """Client for the FIP play history API."""

    ENDPOINT_URL = "https://www.fip.fr/latest/api/graphql"
    PERSISTED_QUERY_HASH = "f8f404573583a6a9410cd24637f214a0b93038696c1d20f19202111b51fd8270"
    MAX_PAGE_SIZE = 100

    def __init__(self, endpoint_url: str = ENDPOINT_URL, station: str = "fip", timeout: int = 10):
        """
        Initialize FIP client.

        Args:
            endpoint_url: GraphQL endpoint, overridden in tests
            station: Station name, one of STATION_IDS
            timeout: Per-request timeout in seconds

        Raises:
            ValueError: If the station is unknown
        """
        if station not in STATION_IDS:
            raise ValueError(
                f"Unknown FIP station {station!r}, expected one of: {', '.join(STATION_IDS)}"
            )

        self.endpoint_url = endpoint_url
        self.station = station
        self.station_id = STATION_IDS[station]
        self.timeout = timeout

        self._session = requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "User-Agent": "Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0",
        })

    def fetch_history(self, timestamp_from: int, count: int) -> TrackList:
        """
        Fetch `count` tracks played since `timestamp_from`.

        Pages of at most MAX_PAGE_SIZE tracks are requested one after the other,
        each one starting at the end cursor of the previous page.

        Args:
            timestamp_from: Unix epoch in seconds
            count: Total number of tracks wanted

        Returns:
            Tracks in the order the API returned them, pages concatenated in fetch order

        Raises:
            ValueError: If count is not positive
            TransportError, ProtocolError, DecodeError, EmptyResultError: If any page fails.
                No partial result is returned.
        """
        if count <= 0:
            raise ValueError(f"Track count must be positive, got {count}")

        logger.info(
            f"Fetching {count} tracks from {self.station} (station ID {self.station_id}) "
            f"since {timestamp_from} ({datetime.fromtimestamp(timestamp_from, tz=timezone.utc)})"
        )

        tracks: TrackList = []
        cursor = timestamp_from
        remaining = count
        page_number = 0

        while remaining > 0:
            page_size = min(remaining, self.MAX_PAGE_SIZE)
            page_number += 1

            page_tracks, end_cursor = self._fetch_page(cursor, page_size)
            tracks.extend(page_tracks)
            remaining -= page_size

            logger.debug(
                f"Page {page_number}: {len(page_tracks)} tracks, {remaining} remaining"
            )

            if remaining > 0:
                if end_cursor is None:
                    raise DecodeError(
                        f"History page {page_number} has no endCursor, cannot fetch the next page"
                    )
                # Chain on the page boundary, restarting from timestamp_from
                # would return the same page forever.
                cursor = decode_cursor(end_cursor)

        logger.info(f"Retrieved {len(tracks)} tracks from {self.station} in {page_number} requests")
        return tracks

    def _fetch_page(self, timestamp_from: int, first: int) -> Tuple[TrackList, Optional[str]]:
        """
        Fetch and parse a single history page.

        Returns:
            Tuple of (tracks, raw endCursor or None)
        """
        data = self._make_request(self._build_params(timestamp_from, first))
        return parse_history_page(data)

    def _build_params(self, timestamp_from: int, first: int) -> Dict[str, str]:
        variables = {
            "first": first,
            "after": encode_cursor(timestamp_from),
            "stationID": self.station_id,
        }
        extensions = {
            "persistedQuery": {
                "version": 1,
                "sha256Hash": self.PERSISTED_QUERY_HASH,
            }
        }
        return {
            "operationName": "History",
            "variables": json.dumps(variables, separators=(",", ":")),
            "extensions": json.dumps(extensions, separators=(",", ":")),
        }

    def _make_request(self, params: Dict[str, str]) -> Dict:
        """
        Send a History query.

        Raises:
            TransportError: If the request could not be completed
            ProtocolError: If the API does not answer HTTP 200
            DecodeError: If the body is not JSON
        """
        logger.debug(f"GET {self.endpoint_url} variables={params['variables']}")

        try:
            response = self._session.get(self.endpoint_url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"FIP request failed: {e}")
            raise TransportError(f"FIP request failed: {e}")

        if response.status_code != 200:
            logger.error(f"FIP API responded with HTTP {response.status_code}: {response.text}")
            raise ProtocolError(
                f"FIP API responded with HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Could not parse FIP response: {e}")
            raise DecodeError(f"Could not parse FIP response: {e}")


def parse_history_page(data: Dict) -> Tuple[TrackList, Optional[str]]:
    """
    Pick tracks and the end cursor out of a History response.

    The API stores the song title under `subtitle` and the artist under `title`.

    Args:
        data: Decoded JSON response

    Returns:
        Tuple of (tracks, raw endCursor or None)

    Raises:
        DecodeError: If the response does not have the expected shape
        EmptyResultError: If the page holds no tracks
    """
    if not isinstance(data, dict):
        raise DecodeError(f"Unexpected FIP response type: {type(data).__name__}")

    payload = data.get("data") or {}
    timeline = payload.get("timelineCursor") if isinstance(payload, dict) else None
    if not isinstance(timeline, dict):
        timeline = {}
    edges = timeline.get("edges") or []
    if not isinstance(edges, list):
        raise DecodeError("FIP response 'edges' is not a list")

    tracks: List[Track] = []
    for edge in edges:
        node = edge.get("node") if isinstance(edge, dict) else None
        if not isinstance(node, dict):
            raise DecodeError(f"FIP edge without node: {edge!r}")
        tracks.append(Track(
            title=node.get("subtitle") or "",
            artist=node.get("title") or "",
            album=node.get("album") or "",
        ))

    if not tracks:
        logger.error(f"Empty FIP history page: {data}")
        raise EmptyResultError("FIP returned an empty history page")

    page_info = timeline.get("pageInfo") or {}
    if not isinstance(page_info, dict):
        raise DecodeError(f"FIP response 'pageInfo' is not an object: {page_info!r}")
    return tracks, page_info.get("endCursor")
