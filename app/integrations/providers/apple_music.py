"""
Apple Music adapter (MusicKit).

There is no authorization-code exchange: the client authorizes with MusicKit
using a developer token we sign, and posts back the resulting Music User
Token. API calls carry both tokens.
"""
from datetime import timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from jose import jwt
from jose.exceptions import JOSEError

from app.core.exceptions import ConfigurationError
from app.core.logging_config import log_debug
from app.core.time_utils import parse_datetime, serialize_datetime, utc_now
from app.integrations.base import ProviderAdapter, get_json
from app.integrations.config import AppleMusicConfig
from app.integrations.credentials import Credential
from app.integrations.schemas import ConnectResponse
from app.integrations.sync_engine import Classification, NormalizedItem, SyncContext, SyncStream
from app.models.integration import IntegrationProvider

APPLE_MUSIC_API_URL = "https://api.music.apple.com"
APPLE_MUSIC_AUTHORIZE_URL = "https://authorize.music.apple.com/woa"
APP_NAME = "Connect Hub"

DEVELOPER_TOKEN_TTL = timedelta(days=180)
# Music User Tokens do not expire but can be revoked; tracked for a year
USER_TOKEN_TTL_SECONDS = 365 * 24 * 3600
PAGE_SIZE = 100


def _artwork_url(attributes: Dict[str, Any]) -> Optional[str]:
    return (attributes.get("artwork") or {}).get("url")


# ================================================================================
# CANNED DATA
# ================================================================================

def mock_recently_played(now) -> List[Dict[str, Any]]:
    tracks = [
        ("mock-track-1", "Blinding Lights", "The Weeknd", "After Hours", 200040, 2),
        ("mock-track-2", "Levitating", "Dua Lipa", "Future Nostalgia", 203064, 5),
        ("mock-track-3", "good 4 u", "Olivia Rodrigo", "SOUR", 178147, 24),
    ]
    return [
        {
            "id": f"mock-play-{index}",
            "type": "songs",
            "attributes": {
                "name": name,
                "artistName": artist,
                "albumName": album,
                "durationInMillis": duration,
                "genreNames": ["Pop"],
                "playedDate": serialize_datetime(now - timedelta(hours=hours_ago)),
                "trackId": track_id,
            },
        }
        for index, (track_id, name, artist, album, duration, hours_ago) in enumerate(tracks, start=1)
    ]


def mock_library_songs(now) -> List[Dict[str, Any]]:
    songs = [
        ("mock-library-1", "Shape of You", "Ed Sheeran", "÷ (Deluxe)", 7),
        ("mock-library-2", "Watermelon Sugar", "Harry Styles", "Fine Line", 14),
    ]
    return [
        {
            "id": song_id,
            "type": "library-songs",
            "attributes": {
                "name": name,
                "artistName": artist,
                "albumName": album,
                "playCount": 0,
                "dateAdded": serialize_datetime(now - timedelta(days=days_ago)),
            },
        }
        for song_id, name, artist, album, days_ago in songs
    ]


def mock_playlists(now) -> List[Dict[str, Any]]:
    return [
        {
            "id": "mock-playlist-1",
            "type": "library-playlists",
            "attributes": {
                "name": "My Favorites",
                "description": {"standard": "Songs I keep coming back to"},
                "isPublic": False,
                "canEdit": True,
                "dateAdded": serialize_datetime(now - timedelta(days=30)),
                "lastModifiedDate": serialize_datetime(now - timedelta(days=1)),
            },
            "relationships": {"tracks": {"data": [
                {"id": "mock-track-1", "attributes": {"name": "Blinding Lights", "artistName": "The Weeknd"}},
                {"id": "mock-track-2", "attributes": {"name": "Levitating", "artistName": "Dua Lipa"}},
            ]}},
        },
        {
            "id": "mock-playlist-2",
            "type": "library-playlists",
            "attributes": {
                "name": "Workout Mix",
                "description": {"standard": "High energy"},
                "isPublic": False,
                "canEdit": True,
                "dateAdded": serialize_datetime(now - timedelta(days=60)),
                "lastModifiedDate": serialize_datetime(now - timedelta(days=3)),
            },
            "relationships": {"tracks": {"data": [
                {"id": "mock-track-3", "attributes": {"name": "good 4 u", "artistName": "Olivia Rodrigo"}},
            ]}},
        },
    ]


# ================================================================================
# STREAMS
# ================================================================================

class _AppleMusicStream(SyncStream):
    path: str = ""
    category_name: str = ""

    def __init__(self, adapter: "AppleMusicProvider"):
        self._adapter = adapter

    def mock_records(self, context: SyncContext) -> List[Dict[str, Any]]:
        return []

    def keep(self, record: Dict[str, Any], context: SyncContext) -> bool:
        return True

    async def fetch(self, context: SyncContext):
        if self._adapter.config.use_mock_data:
            log_debug("Serving canned Apple Music data", stream=self.name, user_id=context.user_id)
            records = [r for r in self.mock_records(context) if self.keep(r, context)]
            if records:
                yield records
            return

        headers = self._adapter.api_headers(context.access_token)
        url = f"{APPLE_MUSIC_API_URL}{self.path}"
        params: Optional[Dict[str, Any]] = {"limit": PAGE_SIZE}
        while url:
            data = await get_json(context.client, url, headers=headers, params=params)
            records = [r for r in data.get("data") or [] if self.keep(r, context)]
            if records:
                yield records
            next_path = data.get("next")
            url = f"{APPLE_MUSIC_API_URL}{next_path}" if next_path else None
            params = None

    def classify(self, record, context) -> Classification:
        return Classification(list_name="Music", category_name=self.category_name)


class RecentlyPlayedStream(_AppleMusicStream):
    name = "recently_played"
    path = "/v1/me/recent/played/tracks"
    category_name = "Recently Played"

    def mock_records(self, context):
        return mock_recently_played(context.now)

    def keep(self, record, context) -> bool:
        played_at = parse_datetime((record.get("attributes") or {}).get("playedDate"))
        return played_at is None or played_at >= context.since

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        attributes = record.get("attributes") or {}
        if not record.get("id") or not attributes.get("name"):
            return None
        played_at = parse_datetime(attributes.get("playedDate"))
        return NormalizedItem(
            title=f"{attributes['name']} | Recently Played",
            external_id=record["id"],
            external_type="play_history",
            attributes={
                "played_at": serialize_datetime(played_at),
                "track_name": attributes.get("name"),
                "artist_name": attributes.get("artistName"),
                "album_name": attributes.get("albumName"),
                "duration_ms": attributes.get("durationInMillis"),
                "genres": attributes.get("genreNames") or [],
                "artwork": _artwork_url(attributes),
                "isrc": attributes.get("isrc"),
            },
            attribute_types={"played_at": "datetime", "duration_ms": "number", "artwork": "url"},
            occurred_at=played_at,
        )


class LibrarySongsStream(_AppleMusicStream):
    name = "library_songs"
    path = "/v1/me/library/songs"
    category_name = "Library"

    def mock_records(self, context):
        return mock_library_songs(context.now)

    def keep(self, record, context) -> bool:
        added_at = parse_datetime((record.get("attributes") or {}).get("dateAdded"))
        return added_at is not None and added_at >= context.since

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        attributes = record.get("attributes") or {}
        if not record.get("id") or not attributes.get("name"):
            return None
        added_at = parse_datetime(attributes.get("dateAdded"))
        return NormalizedItem(
            title=f"{attributes['name']} | Library",
            external_id=record["id"],
            external_type="library_song",
            attributes={
                "added_at": serialize_datetime(added_at),
                "track_name": attributes.get("name"),
                "artist_name": attributes.get("artistName"),
                "album_name": attributes.get("albumName"),
                "play_count": attributes.get("playCount") or 0,
                "artwork": _artwork_url(attributes),
            },
            attribute_types={"added_at": "datetime", "play_count": "number", "artwork": "url"},
            occurred_at=added_at,
        )


class PlaylistsStream(_AppleMusicStream):
    name = "playlists"
    path = "/v1/me/library/playlists"
    category_name = "Playlists"

    def mock_records(self, context):
        return mock_playlists(context.now)

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        attributes = record.get("attributes") or {}
        if not record.get("id") or not attributes.get("name"):
            return None
        tracks = ((record.get("relationships") or {}).get("tracks") or {}).get("data") or []
        modified_at = parse_datetime(attributes.get("lastModifiedDate"))
        return NormalizedItem(
            title=f"{attributes['name']} | Playlists",
            external_id=record["id"],
            external_type="playlist",
            attributes={
                "playlist_name": attributes.get("name"),
                "description": (attributes.get("description") or {}).get("standard"),
                "is_public": attributes.get("isPublic"),
                "can_edit": attributes.get("canEdit"),
                "created_at": attributes.get("dateAdded"),
                "last_modified_at": attributes.get("lastModifiedDate"),
                "track_count": len(tracks),
                "tracks": [
                    {
                        "id": track.get("id"),
                        "name": (track.get("attributes") or {}).get("name"),
                        "artist_name": (track.get("attributes") or {}).get("artistName"),
                    }
                    for track in tracks
                ],
                "artwork": _artwork_url(attributes),
            },
            attribute_types={
                "is_public": "boolean",
                "can_edit": "boolean",
                "created_at": "datetime",
                "last_modified_at": "datetime",
                "track_count": "number",
            },
            occurred_at=modified_at,
        )


# ================================================================================
# ADAPTER
# ================================================================================

class AppleMusicProvider(ProviderAdapter):
    provider = IntegrationProvider.APPLE_MUSIC
    display_name = "Apple Music"
    list_name = "Music"

    config: AppleMusicConfig

    def generate_developer_token(self) -> str:
        """Sign an ES256 MusicKit developer token valid for six months."""
        self.check_configuration()
        now = utc_now()
        private_key = self.config.private_key.replace("\\n", "\n")
        try:
            return jwt.encode(
                {
                    "iss": self.config.team_id,
                    "iat": int(now.timestamp()),
                    "exp": int((now + DEVELOPER_TOKEN_TTL).timestamp()),
                },
                private_key,
                algorithm="ES256",
                headers={"kid": self.config.key_id},
            )
        except JOSEError as e:
            raise ConfigurationError(self.name, f"Failed to sign Apple Music developer token: {e}") from e

    def api_headers(self, music_user_token: Optional[str]) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.generate_developer_token()}",
            "Music-User-Token": music_user_token or "",
        }

    def build_authorize_url(self, developer_token: str, state: str) -> str:
        params = {
            "app_name": APP_NAME,
            "app_url": self.config.callback_url,
            "developer_token": developer_token,
            "state": state,
        }
        return f"{APPLE_MUSIC_AUTHORIZE_URL}?{urlencode(params)}"

    async def _build_connection(self, user_id: str, state: str) -> ConnectResponse:
        developer_token = self.generate_developer_token()
        return ConnectResponse(
            provider=self.name,
            redirect_url=self.build_authorize_url(developer_token, state),
            link_token=developer_token,
            state=state,
            details={"supported_types": [RecentlyPlayedStream.name, LibrarySongsStream.name, PlaylistsStream.name]},
        )

    async def _complete_callback(self, user_id: str, payload) -> None:
        await self.credentials.set(user_id, self.provider, Credential(
            access_token=payload.music_user_token,
            expires_at=int(utc_now().timestamp()) + USER_TOKEN_TTL_SECONDS,
        ))

    def sync_streams(self, context: SyncContext) -> List[SyncStream]:
        return [RecentlyPlayedStream(self), LibrarySongsStream(self), PlaylistsStream(self)]

    async def _status_details(self, user_id: str, credential: Optional[Credential]) -> Dict[str, Any]:
        return {
            "token_expires_at": credential.expires_at if credential else None,
            "has_developer_token": not self.config.missing_fields(),
            "use_mock_data": self.config.use_mock_data,
        }
