"""Synchronization service for copying FIP history to Tidal playlists."""

import argparse
import json
import sys
import time
from datetime import datetime
from typing import Dict, List, Optional
from radiosync.errors import SyncError
from radiosync.fip_client import FipClient, STATION_IDS
from radiosync.matcher import TrackMatcher, unique_track_ids
from radiosync.models import NOT_FOUND, AppendState, PlaylistHandle, Track, TrackList
from radiosync.tidal_client import TidalClient
from radiosync.utils.credentials import TidalAccount, parse_credentials
from radiosync.utils.logger import setup_logger, get_logger


class SyncReport:
    """Report of synchronization results."""

    def __init__(self, playlist_name: str = ""):
        """Initialize empty sync report."""
        self.playlist_name = playlist_name
        self.start_time = datetime.now()
        self.end_time = None
        self.tracks_requested = 0
        self.accounts_synced = []
        self.accounts_failed = []
        self.missing_tracks = []
        self.low_confidence_matches = []
        self.errors = []

    def add_account_result(self, username: str, playlist_uuid: str, tracks_added: int, unique_tracks: int):
        """Record an account whose playlist was fully populated."""
        self.accounts_synced.append({
            'username': username,
            'playlist_uuid': playlist_uuid,
            'tracks_added': tracks_added,
            'unique_tracks': unique_tracks
        })

    def add_failed_account(self, username: str, error: str, playlist_uuid: str = None, tracks_added: int = 0):
        """Record an account whose sync was aborted."""
        self.accounts_failed.append({
            'username': username,
            'playlist_uuid': playlist_uuid,
            'tracks_added': tracks_added,
            'error': error
        })
        self.add_error(f"{username}: {error}")

    def add_missing_track(self, track: Track):
        """Record a track Tidal search returned nothing for."""
        entry = track._asdict()
        if entry not in self.missing_tracks:
            self.missing_tracks.append(entry)

    def add_low_confidence_match(self, track: Track, tidal_track: Dict, score: float):
        """Record a match whose metadata differs noticeably from the aired track."""
        entry = {
            'title': track.title,
            'artist': track.artist,
            'tidal_id': tidal_track['id'],
            'tidal_title': tidal_track['title'],
            'tidal_artist': tidal_track['artist'],
            'score': round(score, 2)
        }
        if entry not in self.low_confidence_matches:
            self.low_confidence_matches.append(entry)

    def add_error(self, error: str):
        """Record an error."""
        self.errors.append(error)

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def finalize(self):
        """Mark sync as complete."""
        self.end_time = datetime.now()

    def to_dict(self) -> Dict:
        """Convert report to dictionary."""
        duration = None
        if self.end_time:
            duration = (self.end_time - self.start_time).total_seconds()

        return {
            'playlist_name': self.playlist_name,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration_seconds': duration,
            'succeeded': self.succeeded,
            'tracks_requested': self.tracks_requested,
            'accounts_synced': self.accounts_synced,
            'accounts_failed': self.accounts_failed,
            'missing_tracks': self.missing_tracks,
            'low_confidence_matches': self.low_confidence_matches,
            'errors': self.errors
        }

    def save_to_file(self, filepath: str):
        """Save report to JSON file."""
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)


class SyncService:
    """Service for copying a FIP track list into Tidal playlists."""

    def __init__(
        self,
        credentials_path: str = "credentials.md",
        log_file: str = None,
        base_url: str = TidalClient.BASE_URL,
        manifest_url: str = TidalClient.MANIFEST_URL
    ):
        """
        Initialize sync service.

        Args:
            credentials_path: Path to credentials file
            log_file: Optional path to log file
            base_url: Tidal API base URL
            manifest_url: Tidal token manifest URL
        """
        self.credentials_path = credentials_path
        self.base_url = base_url
        self.manifest_url = manifest_url
        self.logger = setup_logger(log_file=log_file) if log_file else get_logger()
        self.token: Optional[str] = None

    def load_accounts(self) -> List[TidalAccount]:
        """
        Load Tidal accounts from the credentials file.

        Raises:
            CredentialsError: If credentials cannot be loaded
        """
        self.logger.info(f"Loading credentials from {self.credentials_path}")
        try:
            return parse_credentials(self.credentials_path)
        except Exception as e:
            self.logger.error(f"Failed to load credentials: {e}")
            raise

    def refresh_token(self) -> str:
        """
        Fetch the current Tidal API token.

        Tidal rotates the shared token outside of our control, so this runs at
        the start of every sync.
        """
        client = self._create_client()
        self.token = client.fetch_token()
        return self.token

    def _create_client(self) -> TidalClient:
        return TidalClient(token=self.token, base_url=self.base_url, manifest_url=self.manifest_url)

    def sync_to_destination(
        self,
        playlist_name: str,
        tracks: TrackList,
        accounts: List[TidalAccount] = None
    ) -> SyncReport:
        """
        Create a playlist holding `tracks` on every Tidal account.

        Accounts are processed one after the other and independently: a
        failure is recorded in the report and the next account is attempted.

        Args:
            playlist_name: Title of the playlist to create
            tracks: Tracks to add, in order
            accounts: Accounts to sync, loaded from the credentials file if None

        Returns:
            SyncReport, report.succeeded is False if any account failed

        Raises:
            CredentialsError: If accounts is None and the credentials cannot be loaded
        """
        report = SyncReport(playlist_name)
        report.tracks_requested = len(tracks)

        if accounts is None:
            accounts = self.load_accounts()

        try:
            self.refresh_token()
        except SyncError as e:
            self.logger.error(f"Could not fetch Tidal API token: {e}")
            for account in accounts:
                report.add_failed_account(account.username, f"Could not fetch Tidal API token: {e}")
            report.finalize()
            return report

        for i, account in enumerate(accounts, 1):
            self.logger.info(f"Processing account {account.username} ({i}/{len(accounts)})")
            self.sync_account(account, playlist_name, tracks, report)
            self.logger.info(f"Done with account {account.username} ({i}/{len(accounts)})")

        report.finalize()
        return report

    def sync_account(
        self,
        account: TidalAccount,
        playlist_name: str,
        tracks: TrackList,
        report: SyncReport
    ) -> bool:
        """
        Log in, resolve tracks, create the playlist and populate it for one account.

        Returns:
            True if the playlist was fully populated, False otherwise
        """
        client = self._create_client()
        handle: Optional[PlaylistHandle] = None

        try:
            client.login(account.username, account.password)

            # Search results depend on the account's country code
            matcher = TrackMatcher(client)
            track_ids = matcher.resolve(tracks)
            for track in matcher.missing:
                report.add_missing_track(track)
            for result in matcher.low_confidence:
                report.add_low_confidence_match(result.track, result.tidal_track, result.score)

            unique_ids = unique_track_ids(track_ids)
            self.logger.info(
                f"Matched {len(unique_ids)} unique tracks out of {len(tracks)} "
                f"({track_ids.count(NOT_FOUND)} not found)"
            )

            handle = client.create_playlist(playlist_name, "")
            self.populate_playlist(client, handle, unique_ids)

        except SyncError as e:
            self.logger.error(f"Error syncing account {account.username}: {e}")
            report.add_failed_account(
                account.username,
                str(e),
                playlist_uuid=handle.uuid if handle else None,
                tracks_added=handle.tracks_added if handle else 0
            )
            return False

        report.add_account_result(account.username, handle.uuid, handle.tracks_added, len(unique_ids))
        return True

    def populate_playlist(self, client: TidalClient, handle: PlaylistHandle, track_ids: List[int]) -> int:
        """
        Append tracks to a playlist one at a time.

        The playlist's lastUpdated value is read again right before each
        append since Tidal rejects a mutation carrying a stale one. The first
        failure stops the loop, tracks already added stay in the playlist.

        Args:
            client: Logged in Tidal client
            handle: Playlist to populate, handle.tracks_added is updated in place
            track_ids: Unique Tidal track IDs, in order

        Returns:
            Number of tracks added

        Raises:
            SyncError: From the first failing refresh or append
        """
        self.logger.info(f"Adding {len(track_ids)} unique tracks to playlist {handle.uuid}")

        for i, track_id in enumerate(track_ids, 1):
            handle.state = AppendState.PENDING
            try:
                handle.last_updated = client.get_last_updated(handle.uuid)
                handle.state = AppendState.TOKEN_REFRESHED
                client.add_track(handle.uuid, track_id, handle.last_updated)
            except SyncError as e:
                handle.state = AppendState.FAILED
                self.logger.error(
                    f"Error adding track {track_id} ({i}/{len(track_ids)}) to playlist {handle.uuid}: {e}"
                )
                raise
            handle.state = AppendState.APPENDED
            handle.tracks_added += 1
            self.logger.info(f"Added track {track_id} ({i}/{len(track_ids)})")

        self.logger.info(f"Added {handle.tracks_added}/{len(track_ids)} tracks to playlist {handle.uuid}")
        return handle.tracks_added


def default_playlist_name(station: str, timestamp_from: int) -> str:
    return f"{station.upper()} {datetime.fromtimestamp(timestamp_from).strftime('%Y-%m-%d %H:%M')}"


def main(argv: List[str] = None):
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Copy FIP's recently played tracks to a Tidal playlist"
    )
    parser.add_argument(
        '--from',
        dest='timestamp_from',
        type=int,
        default=None,
        help='Unix timestamp (seconds) to fetch history from (default: 24 hours ago)'
    )
    parser.add_argument(
        '--count',
        type=int,
        default=100,
        help='Number of tracks to fetch (default: 100)'
    )
    parser.add_argument(
        '--station',
        type=str,
        choices=list(STATION_IDS),
        default='fip',
        help='FIP station (default: fip)'
    )
    parser.add_argument(
        '--name',
        type=str,
        default=None,
        help='Playlist name (default: station and start date)'
    )
    parser.add_argument(
        '--credentials',
        type=str,
        default='credentials.md',
        help='Path to credentials file (default: credentials.md)'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        default=None,
        help='Path to log file (optional)'
    )
    parser.add_argument(
        '--report',
        type=str,
        default=None,
        help='Path to write a JSON sync report to (optional)'
    )

    args = parser.parse_args(argv)
    if args.count <= 0:
        parser.error('--count must be positive')

    timestamp_from = args.timestamp_from
    if timestamp_from is None:
        timestamp_from = int(time.time()) - 24 * 60 * 60
    playlist_name = args.name or default_playlist_name(args.station, timestamp_from)

    try:
        service = SyncService(
            credentials_path=args.credentials,
            log_file=args.log_file
        )
        accounts = service.load_accounts()

        tracks = FipClient(station=args.station).fetch_history(timestamp_from, args.count)

        report = service.sync_to_destination(playlist_name, tracks, accounts)

        if args.report:
            report.save_to_file(args.report)
            service.logger.info(f"Report saved to: {args.report}")

        if not report.succeeded:
            print(f"\nSync failed for {len(report.accounts_failed)} account(s)")
            sys.exit(1)

        print("\nSync completed successfully!")
        sys.exit(0)

    except KeyboardInterrupt:
        print("\n\nSync interrupted by user")
        sys.exit(1)
    except Exception as e:
        print(f"\nSync failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
