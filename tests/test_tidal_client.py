"""Unit tests for Tidal client."""

import json
from pathlib import Path
import pytest
from unittest.mock import Mock, patch
import requests
from radiosync.errors import (
    DecodeError, NotAuthenticatedError, PreconditionFailedError, ProtocolError, TransportError
)
from radiosync.models import AppendState, PlaylistHandle
from radiosync.tidal_client import TidalClient, parse_last_updated


FIXTURES = Path(__file__).parent / "fixtures" / "tidal"

# 2020-07-25T00:30:00Z
CREATED_AT_MS = 1595637000000


def load_fixture(name):
    with open(FIXTURES / name, encoding='utf-8') as f:
        return json.load(f)


def make_response(json_data=None, status_code=200, text=""):
    response = Mock()
    response.status_code = status_code
    response.text = text or json.dumps(json_data)
    response.content = response.text.encode('utf-8')
    response.json.return_value = json_data
    return response


@pytest.fixture
def tidal_client():
    """Create a Tidal client with a token."""
    return TidalClient(
        token="mockToken",
        base_url="http://tidal.test/v1",
        manifest_url="http://manifest.test/tokens.json"
    )


@pytest.fixture
def logged_in_client(tidal_client):
    """Create a logged in Tidal client."""
    tidal_client.session_id = "mock-session-id"
    tidal_client.country_code = "MK"
    tidal_client.user_id = 133713373
    return tidal_client


class TestParseLastUpdated:
    """Test cases for parse_last_updated."""

    def test_iso_with_offset(self):
        assert parse_last_updated("2020-07-25T00:30:00.000+0000") == CREATED_AT_MS

    def test_iso_with_gmt(self):
        assert parse_last_updated("2020-07-25T00:30:00.000GMT") == CREATED_AT_MS

    def test_iso_with_other_offset(self):
        assert parse_last_updated("2020-07-25T02:30:00.000+0200") == CREATED_AT_MS

    def test_milliseconds(self):
        assert parse_last_updated(CREATED_AT_MS) == CREATED_AT_MS
        assert parse_last_updated(str(CREATED_AT_MS)) == CREATED_AT_MS

    @pytest.mark.parametrize("value", [None, "", "yesterday", 12.5, True])
    def test_invalid(self, value):
        with pytest.raises(DecodeError):
            parse_last_updated(value)


class TestTidalClient:
    """Test cases for TidalClient."""

    def test_init(self, tidal_client):
        """Test client initialization."""
        assert tidal_client.token == "mockToken"
        assert tidal_client.session_id is None
        assert tidal_client.user_id is None
        assert tidal_client.country_code == "US"
        assert tidal_client._session.headers["Origin"] == "https://listen.tidal.com"

    def test_fetch_token(self, tidal_client):
        """Test fetching the API token from the manifest."""
        tidal_client.token = None
        response = make_response(load_fixture("tokens.json"))

        with patch.object(tidal_client._session, 'get', return_value=response) as mock_get:
            token = tidal_client.fetch_token()

        assert token == "mockToken"
        assert tidal_client.token == "mockToken"
        assert mock_get.call_args.args[0] == "http://manifest.test/tokens.json"

    def test_fetch_token_missing(self, tidal_client):
        """Test a manifest without token."""
        response = make_response({"token_phone": "mockPhoneToken"})

        with patch.object(tidal_client._session, 'get', return_value=response):
            with pytest.raises(DecodeError, match="no 'token'"):
                tidal_client.fetch_token()

    def test_fetch_token_network_error(self, tidal_client):
        """Test a manifest that cannot be reached."""
        with patch.object(tidal_client._session, 'get', side_effect=requests.exceptions.Timeout("timed out")):
            with pytest.raises(TransportError):
                tidal_client.fetch_token()

    def test_fetch_token_http_error(self, tidal_client):
        """Test a manifest answering 404."""
        with patch.object(tidal_client._session, 'get', return_value=make_response(text="Not found", status_code=404)):
            with pytest.raises(ProtocolError) as exc_info:
                tidal_client.fetch_token()

        assert exc_info.value.status_code == 404

    def test_make_request_without_token(self):
        """Test that requests need a token."""
        client = TidalClient(base_url="http://tidal.test/v1")

        with pytest.raises(NotAuthenticatedError, match="No Tidal API token"):
            client._make_request("/search/tracks")

    def test_make_request_adds_token_and_country(self, tidal_client):
        """Test that every request carries the token and country code."""
        with patch.object(tidal_client._session, 'get', return_value=make_response({})) as mock_get:
            tidal_client._make_request("/playlists/abc")

        call = mock_get.call_args
        assert call.args[0] == "http://tidal.test/v1/playlists/abc"
        assert call.kwargs['params'] == {"token": "mockToken", "countryCode": "US"}
        assert "X-Tidal-SessionId" not in call.kwargs['headers']

    def test_make_request_adds_session(self, logged_in_client):
        """Test that requests after login carry the session and the user's country."""
        with patch.object(logged_in_client._session, 'get', return_value=make_response({})) as mock_get:
            logged_in_client._make_request("/playlists/abc")

        call = mock_get.call_args
        assert call.kwargs['params']['countryCode'] == "MK"
        assert call.kwargs['params']['token'] == "mockToken"
        assert call.kwargs['headers']['X-Tidal-SessionId'] == "mock-session-id"

    def test_make_request_created(self, tidal_client):
        """Test that HTTP 201 is a success."""
        with patch.object(tidal_client._session, 'post', return_value=make_response({'ok': True}, status_code=201)):
            assert tidal_client._make_request("/x", method="POST", data={}) == {'ok': True}

    def test_make_request_empty_body(self, tidal_client):
        """Test that an empty body gives an empty dict."""
        response = make_response({})
        response.content = b""

        with patch.object(tidal_client._session, 'post', return_value=response):
            assert tidal_client._make_request("/x", method="POST") == {}

        response.json.assert_not_called()

    def test_make_request_http_error(self, tidal_client):
        """Test that a non-success status is a protocol error."""
        response = make_response({"status": 401, "userMessage": "Session expired"}, status_code=401)

        with patch.object(tidal_client._session, 'get', return_value=response):
            with pytest.raises(ProtocolError) as exc_info:
                tidal_client._make_request("/search/tracks")

        assert exc_info.value.status_code == 401
        assert not isinstance(exc_info.value, PreconditionFailedError)

    def test_make_request_precondition_failed(self, tidal_client):
        """Test that HTTP 412 is a precondition error."""
        response = make_response({"status": 412, "userMessage": "If-None-Match mismatch"}, status_code=412)

        with patch.object(tidal_client._session, 'post', return_value=response):
            with pytest.raises(PreconditionFailedError):
                tidal_client._make_request("/playlists/abc/items", method="POST")

    def test_make_request_network_error(self, tidal_client):
        """Test that a network failure is a transport error."""
        with patch.object(tidal_client._session, 'get', side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(TransportError):
                tidal_client._make_request("/search/tracks")

    def test_make_request_invalid_json(self, tidal_client):
        """Test that an unparseable body is a decode error."""
        response = make_response(text="<html></html>")
        response.json.side_effect = ValueError("Expecting value")

        with patch.object(tidal_client._session, 'get', return_value=response):
            with pytest.raises(DecodeError):
                tidal_client._make_request("/search/tracks")

    def test_make_request_non_object_body(self, tidal_client):
        """Test that a JSON body other than an object is a decode error."""
        with patch.object(tidal_client._session, 'get', return_value=make_response([])):
            with pytest.raises(DecodeError, match="list"):
                tidal_client._make_request("/search/tracks")

    def test_login(self, tidal_client):
        """Test logging in."""
        response = make_response(load_fixture("login_response.json"))

        with patch.object(tidal_client._session, 'post', return_value=response) as mock_post:
            tidal_client.login("mockuser@example.org", "secret")

        assert tidal_client.session_id == "mock-session-id"
        assert tidal_client.country_code == "MK"
        assert tidal_client.user_id == 133713373
        call = mock_post.call_args
        assert call.args[0] == "http://tidal.test/v1/login/username"
        assert call.kwargs['data'] == {"username": "mockuser@example.org", "password": "secret"}

    def test_login_failure(self, tidal_client):
        """Test logging in with bad credentials."""
        response = make_response({"status": 401, "userMessage": "Invalid credentials"}, status_code=401)

        with patch.object(tidal_client._session, 'post', return_value=response):
            with pytest.raises(ProtocolError):
                tidal_client.login("mockuser@example.org", "wrong")

        assert tidal_client.session_id is None

    def test_login_incomplete_response(self, tidal_client):
        """Test a login response without session."""
        with patch.object(tidal_client._session, 'post', return_value=make_response({"userId": 1})):
            with pytest.raises(DecodeError):
                tidal_client.login("mockuser@example.org", "secret")

    def test_search_track(self, logged_in_client):
        """Test searching for a track."""
        response = make_response(load_fixture("search-track_result_response.json"))

        with patch.object(logged_in_client._session, 'get', return_value=response) as mock_get:
            result = logged_in_client.search_track("Scar tissue", "Red Hot Chili Peppers")

        assert result == {
            'id': 132616868,
            'title': 'Scar Tissue',
            'artist': 'Red Hot Chili Peppers',
            'album': 'Greatest Hits'
        }
        params = mock_get.call_args.kwargs['params']
        assert mock_get.call_args.args[0] == "http://tidal.test/v1/search/tracks"
        assert params['query'] == "Scar tissue Red Hot Chili Peppers"
        assert params['limit'] == 1
        assert params['offset'] == 0
        assert params['types'] == "TRACKS"

    def test_search_track_not_found(self, logged_in_client):
        """Test a search without results."""
        response = make_response(load_fixture("search-track_empty_response.json"))

        with patch.object(logged_in_client._session, 'get', return_value=response):
            assert logged_in_client.search_track("Unknown", "Nobody") is None

    def test_search_track_error(self, logged_in_client):
        """Test that a failing search raises instead of returning None."""
        with patch.object(logged_in_client._session, 'get', return_value=make_response(text="oops", status_code=500)):
            with pytest.raises(ProtocolError):
                logged_in_client.search_track("Scar tissue", "Red Hot Chili Peppers")

    def test_search_track_non_object_body(self, logged_in_client):
        """Test a search answered with a JSON list."""
        with patch.object(logged_in_client._session, 'get', return_value=make_response([])):
            with pytest.raises(DecodeError):
                logged_in_client.search_track("Scar tissue", "Red Hot Chili Peppers")

    def test_search_track_non_numeric_id(self, logged_in_client):
        """Test a search result whose id is not a number."""
        response = make_response({"items": [{"id": "not-a-number", "title": "Scar Tissue"}]})

        with patch.object(logged_in_client._session, 'get', return_value=response):
            with pytest.raises(DecodeError, match="not-a-number"):
                logged_in_client.search_track("Scar tissue", "Red Hot Chili Peppers")

    @pytest.mark.parametrize("body", [
        {"items": "oops"},
        {"items": ["oops"]},
        {"items": [{"title": "Scar Tissue"}]},
        {"items": [{"id": None}]},
    ])
    def test_search_track_malformed_items(self, logged_in_client, body):
        """Test search results that are not track objects with an id."""
        with patch.object(logged_in_client._session, 'get', return_value=make_response(body)):
            with pytest.raises(DecodeError):
                logged_in_client.search_track("Scar tissue", "Red Hot Chili Peppers")

    def test_search_track_malformed_artist_and_album(self, logged_in_client):
        """Test that artist and album which are not objects read as empty."""
        response = make_response({"items": [{"id": "42", "title": "x", "artist": "y", "album": ["z"]}]})

        with patch.object(logged_in_client._session, 'get', return_value=response):
            result = logged_in_client.search_track("x", "y")

        assert result == {'id': 42, 'title': 'x', 'artist': '', 'album': ''}

    def test_create_playlist(self, logged_in_client):
        """Test creating an empty playlist."""
        response = make_response(load_fixture("playlist-create_response.json"), status_code=201)

        with patch.object(logged_in_client._session, 'post', return_value=response) as mock_post:
            handle = logged_in_client.create_playlist("mock playlist name", "mock playlist description")

        assert isinstance(handle, PlaylistHandle)
        assert handle.uuid == "mock-playlist-uuid"
        assert handle.last_updated == CREATED_AT_MS
        assert handle.tracks_added == 0
        assert handle.state == AppendState.PENDING
        call = mock_post.call_args
        assert call.args[0] == "http://tidal.test/v1/users/133713373/playlists"
        assert call.kwargs['data'] == {"title": "mock playlist name", "description": "mock playlist description"}

    def test_create_playlist_not_logged_in(self, tidal_client):
        """Test that creating a playlist needs a login."""
        with pytest.raises(NotAuthenticatedError, match="Not logged in"):
            tidal_client.create_playlist("mock playlist name")

    def test_create_playlist_without_uuid(self, logged_in_client):
        """Test a creation response without uuid."""
        with patch.object(logged_in_client._session, 'post', return_value=make_response({"title": "x"})):
            with pytest.raises(DecodeError):
                logged_in_client.create_playlist("x")

    def test_create_playlist_non_object_body(self, logged_in_client):
        """Test a creation response that is a JSON list."""
        with patch.object(logged_in_client._session, 'post', return_value=make_response([], status_code=201)):
            with pytest.raises(DecodeError):
                logged_in_client.create_playlist("x")

    def test_get_last_updated_non_object_body(self, logged_in_client):
        """Test a playlist response that is a JSON list."""
        with patch.object(logged_in_client._session, 'get', return_value=make_response([])):
            with pytest.raises(DecodeError):
                logged_in_client.get_last_updated("mock-playlist-uuid")

    def test_get_last_updated(self, logged_in_client):
        """Test reading the playlist's lastUpdated value."""
        response = make_response(load_fixture("playlist_response.json"))

        with patch.object(logged_in_client._session, 'get', return_value=response) as mock_get:
            last_updated = logged_in_client.get_last_updated("mock-playlist-uuid")

        assert last_updated == CREATED_AT_MS + 60 * 1000
        assert mock_get.call_args.args[0] == "http://tidal.test/v1/playlists/mock-playlist-uuid"

    def test_add_track(self, logged_in_client):
        """Test appending a track with the precondition header."""
        response = make_response(load_fixture("playlist-items_response.json"))

        with patch.object(logged_in_client._session, 'post', return_value=response) as mock_post:
            logged_in_client.add_track("mock-playlist-uuid", 132616868, CREATED_AT_MS)

        call = mock_post.call_args
        assert call.args[0] == "http://tidal.test/v1/playlists/mock-playlist-uuid/items"
        assert call.kwargs['data'] == {
            "onArtifactNotFound": "FAIL",
            "onDupes": "FAIL",
            "trackIds": "132616868"
        }
        assert call.kwargs['headers']['If-None-Match'] == "1595637000000"
        assert call.kwargs['headers']['X-Tidal-SessionId'] == "mock-session-id"

    def test_add_track_stale_precondition(self, logged_in_client):
        """Test appending with a stale lastUpdated value."""
        response = make_response({"status": 412, "subStatus": 8001}, status_code=412)

        with patch.object(logged_in_client._session, 'post', return_value=response):
            with pytest.raises(PreconditionFailedError):
                logged_in_client.add_track("mock-playlist-uuid", 132616868, 1)
