"""
Tidal API client.

Every call needs the shared API token published in a third-party manifest
(Tidal rotates it from time to time) plus the account's country code. Calls
made after login also carry the session ID. Playlist mutations need the
playlist's current lastUpdated value in If-None-Match, and Tidal invalidates
that value after each successful mutation.
"""

from datetime import datetime
from typing import Dict, Optional
import requests
from radiosync.errors import (
    DecodeError, NotAuthenticatedError, PreconditionFailedError, ProtocolError, TransportError
)
from radiosync.models import PlaylistHandle
from radiosync.utils.logger import get_logger


logger = get_logger()


def parse_last_updated(value) -> int:
    """
    Convert a Tidal lastUpdated value to a millisecond Unix timestamp.

    Tidal sends ISO timestamps such as 2020-07-25T00:30:00.000+0000 (older
    responses end in GMT instead of an offset). Integers are taken as
    milliseconds already.

    Raises:
        DecodeError: If the value cannot be parsed
    """
    if isinstance(value, bool):
        raise DecodeError(f"Invalid lastUpdated value: {value!r}")
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise DecodeError(f"Invalid lastUpdated value: {value!r}")

    text = value.strip()
    if text.isdigit():
        return int(text)
    if text.endswith("GMT"):
        text = text[:-3] + "+0000"
    elif text.endswith("Z"):
        text = text[:-1] + "+0000"

    for fmt in ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z"):
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return int(parsed.timestamp() * 1000)

    raise DecodeError(f"Invalid lastUpdated value: {value!r}")


class TidalClient:
    """
    Client for the subset of the Tidal API needed to build playlists.

    One instance serves one account: login() stores the session on the instance.
    """

    BASE_URL = "https://api.tidalhifi.com/v1"
    MANIFEST_URL = "https://cdn.jsdelivr.net/gh/yaronzz/Tidal-Media-Downloader@latest/Else/tokens.json"
    DEFAULT_COUNTRY_CODE = "US"

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = BASE_URL,
        manifest_url: str = MANIFEST_URL,
        timeout: int = 10
    ):
        """
        Initialize Tidal client.

        Args:
            token: API token from the manifest, see fetch_token()
            base_url: API base URL, overridden in tests
            manifest_url: Token manifest URL, overridden in tests
            timeout: Per-request timeout in seconds
        """
        self.token = token
        self.base_url = base_url
        self.manifest_url = manifest_url
        self.timeout = timeout

        self.session_id: Optional[str] = None
        self.country_code: str = self.DEFAULT_COUNTRY_CODE
        self.user_id: Optional[int] = None

        self._session = requests.Session()
        self._session.headers.update({
            # What the web client sends
            "Origin": "https://listen.tidal.com",
            "User-Agent": "Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0",
        })

    def fetch_token(self) -> str:
        """
        Fetch the currently valid API token from the manifest and keep it on the client.

        Returns:
            API token

        Raises:
            TransportError, ProtocolError, DecodeError: If the manifest cannot be read
        """
        logger.debug(f"Fetching Tidal tokens manifest from {self.manifest_url}")

        try:
            response = self._session.get(self.manifest_url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching Tidal tokens manifest: {e}")
            raise TransportError(f"Error fetching Tidal tokens manifest: {e}")

        if response.status_code != 200:
            logger.error(f"Tokens manifest responded with HTTP {response.status_code}")
            raise ProtocolError(
                f"Tokens manifest responded with HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            tokens = response.json()
        except ValueError as e:
            logger.error(f"Error parsing Tidal tokens manifest: {e}")
            raise DecodeError(f"Error parsing Tidal tokens manifest: {e}")

        token = tokens.get("token") if isinstance(tokens, dict) else None
        if not token:
            raise DecodeError("Tidal tokens manifest has no 'token' entry")

        # token_phone works too, the web token is the one the browser client uses
        self.token = token
        logger.info("✅ Fetched Tidal API token")
        return token

    def _make_request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Dict = None,
        data: Dict = None,
        headers: Dict = None
    ) -> Dict:
        """
        Make an authenticated request to the Tidal API.

        Args:
            endpoint: API endpoint (without base URL)
            method: HTTP method (GET or POST)
            params: Extra query string parameters
            data: Form data for POST
            headers: Extra headers

        Returns:
            Response JSON (empty dict for an empty body)

        Raises:
            TransportError: If the request could not be completed
            PreconditionFailedError: If Tidal answers HTTP 412
            ProtocolError: For any other status than 200 or 201
            DecodeError: If the body is not a JSON object
            NotAuthenticatedError: If no API token was fetched
        """
        if not self.token:
            raise NotAuthenticatedError("No Tidal API token. Call fetch_token() first.")

        url = f"{self.base_url}{endpoint}"
        query = {"token": self.token, "countryCode": self.country_code}
        if params:
            query.update(params)

        request_headers = dict(headers or {})
        if self.session_id:
            request_headers["X-Tidal-SessionId"] = self.session_id

        logger.debug(f"{method} {url}")

        try:
            if method == "GET":
                response = self._session.get(url, params=query, headers=request_headers, timeout=self.timeout)
            else:  # POST
                response = self._session.post(url, params=query, data=data, headers=request_headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Tidal request {method} {endpoint} failed: {e}")
            raise TransportError(f"Tidal request {method} {endpoint} failed: {e}")

        if response.status_code not in (200, 201):
            logger.error(f"Tidal API responded with HTTP {response.status_code} for {method} {endpoint}: {response.text}")
            error_class = PreconditionFailedError if response.status_code == 412 else ProtocolError
            raise error_class(
                f"Tidal API responded with HTTP {response.status_code} for {method} {endpoint}",
                status_code=response.status_code,
                body=response.text,
            )

        if not response.content:
            return {}

        try:
            result = response.json()
        except ValueError as e:
            logger.error(f"Error parsing Tidal response for {method} {endpoint}: {e}")
            raise DecodeError(f"Error parsing Tidal response for {method} {endpoint}: {e}")

        if not isinstance(result, dict):
            logger.error(f"Unexpected Tidal response for {method} {endpoint}: {response.text}")
            raise DecodeError(
                f"Unexpected Tidal response type for {method} {endpoint}: {type(result).__name__}"
            )
        return result

    def login(self, username: str, password: str) -> None:
        """
        Log an account in and keep its session on the client.

        Raises:
            SyncError: If the login request fails or the response lacks session data
        """
        logger.debug(f"Logging in {username}")
        result = self._make_request(
            "/login/username",
            method="POST",
            data={"username": username, "password": password},
        )

        try:
            self.session_id = result["sessionId"]
            self.user_id = int(result["userId"])
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Unexpected Tidal login response, missing {e}")
        self.country_code = result.get("countryCode") or self.DEFAULT_COUNTRY_CODE

        logger.info(f"✅ Logged in to Tidal as {username} (country {self.country_code})")

    def search_track(self, title: str, artist: str) -> Optional[Dict]:
        """
        Search for "<title> <artist>" and return the best match.

        Args:
            title: Track title
            artist: Artist name

        Returns:
            Track dictionary with keys: id, title, artist, album
            or None if the search has no results

        Raises:
            SyncError: If the search request fails
        """
        query = f"{title} {artist}"
        params = {
            "query": query,
            "limit": 1,  # Only the best match is used
            "offset": 0,
            "types": "TRACKS",
            "includeContributors": "true",  # The Tidal apps always send it
        }

        data = self._make_request("/search/tracks", params=params)

        items = data.get("items") or []
        if not isinstance(items, list):
            raise DecodeError(f"Tidal search 'items' is not a list for query {query!r}")
        if not items:
            logger.debug(f"No track found for query: {query}")
            return None

        item = items[0]
        if not isinstance(item, dict) or "id" not in item:
            raise DecodeError(f"Tidal search result without id for query {query!r}")

        try:
            track_id = int(item["id"])
        except (TypeError, ValueError):
            raise DecodeError(f"Invalid Tidal track id {item['id']!r} for query {query!r}")

        artist = item.get("artist")
        album = item.get("album")
        return {
            "id": track_id,
            "title": item.get("title") or "",
            "artist": (artist.get("name") if isinstance(artist, dict) else None) or "",
            "album": (album.get("title") if isinstance(album, dict) else None) or "",
        }

    def create_playlist(self, title: str, description: str = "") -> PlaylistHandle:
        """
        Create an empty playlist for the logged in user.

        Args:
            title: Playlist title
            description: Playlist description

        Returns:
            Handle with the playlist UUID and its initial lastUpdated value

        Raises:
            NotAuthenticatedError: If login() was not called
            SyncError: If creation fails
        """
        if self.user_id is None:
            raise NotAuthenticatedError("Not logged in. Call login() first.")

        result = self._make_request(
            f"/users/{self.user_id}/playlists",
            method="POST",
            data={"title": title, "description": description},
        )

        if not result.get("uuid"):
            raise DecodeError("Tidal playlist creation response has no uuid")

        handle = PlaylistHandle(
            uuid=result["uuid"],
            last_updated=parse_last_updated(result.get("lastUpdated")),
        )
        logger.info(f"Created Tidal playlist: {title} (UUID: {handle.uuid})")
        return handle

    def get_last_updated(self, playlist_uuid: str) -> int:
        """
        Get a playlist's current lastUpdated value.

        Returns:
            Millisecond Unix timestamp

        Raises:
            SyncError: If the playlist cannot be fetched
        """
        result = self._make_request(f"/playlists/{playlist_uuid}")
        last_updated = parse_last_updated(result.get("lastUpdated"))
        logger.debug(f"Playlist {playlist_uuid} last updated at {last_updated}")
        return last_updated

    def add_track(self, playlist_uuid: str, track_id: int, last_updated: int) -> Dict:
        """
        Append a track to a playlist.

        Tidal is asked to fail rather than skip when the track is already in the
        playlist or does not exist.

        Args:
            playlist_uuid: Playlist UUID
            track_id: Tidal track ID
            last_updated: Current lastUpdated value of the playlist

        Returns:
            Response JSON

        Raises:
            PreconditionFailedError: If last_updated is stale
            SyncError: If the append fails for any other reason
        """
        result = self._make_request(
            f"/playlists/{playlist_uuid}/items",
            method="POST",
            data={
                "onArtifactNotFound": "FAIL",
                "onDupes": "FAIL",
                "trackIds": str(track_id),
            },
            headers={"If-None-Match": str(last_updated)},
        )
        logger.debug(f"Added track {track_id} to playlist {playlist_uuid}")
        return result
