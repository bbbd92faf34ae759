"""
Spotify adapter.

Four streams feed the "Music" list: recently played, liked songs,
playlists and top tracks. Token exchange uses HTTP Basic client auth.
"""
from typing import Any, Dict, List, Optional

from app.core.time_utils import parse_datetime
from app.integrations.base import OAuthProvider, get_json
from app.integrations.credentials import Credential
from app.integrations.sync_engine import Classification, NormalizedItem, SyncContext, SyncStream
from app.models.integration import IntegrationProvider

SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_URL = "https://api.spotify.com/v1"

SAVED_TRACKS_CAP = 1000
PLAYLISTS_CAP = 200
PAGE_SIZE = 50


def _track_attributes(track: Dict[str, Any]) -> Dict[str, Any]:
    album = track.get("album") or {}
    return {
        "track_name": track.get("name"),
        "artists": [artist.get("name") for artist in track.get("artists") or []],
        "album": album.get("name"),
        "duration_ms": track.get("duration_ms"),
        "popularity": track.get("popularity"),
        "url": (track.get("external_urls") or {}).get("spotify"),
    }


def _track_title(track: Dict[str, Any]) -> str:
    artists = ", ".join(artist.get("name", "") for artist in track.get("artists") or [])
    name = track.get("name") or "Unknown track"
    return f"{name} - {artists}" if artists else name


class _SpotifyStream(SyncStream):
    category_name = ""

    def classify(self, record: Dict[str, Any], context: SyncContext) -> Classification:
        return Classification(list_name="Music", category_name=self.category_name)


class RecentlyPlayedStream(_SpotifyStream):
    name = "recently_played"
    category_name = "Recently Played"

    async def fetch(self, context: SyncContext):
        after_ms = int(context.since.timestamp() * 1000)
        data = await get_json(
            context.client,
            f"{SPOTIFY_API_URL}/me/player/recently-played",
            token=context.access_token,
            params={"limit": PAGE_SIZE, "after": after_ms},
        )
        items = data.get("items") or []
        if items:
            yield items

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        track = record.get("track") or {}
        played_at = parse_datetime(record.get("played_at"))
        if not track.get("id") or played_at is None:
            return None
        attributes = _track_attributes(track)
        attributes["played_at"] = record.get("played_at")
        return NormalizedItem(
            title=_track_title(track),
            # Each play is its own record
            external_id=f"{track['id']}:{record['played_at']}",
            external_type="play",
            attributes=attributes,
            attribute_types={"played_at": "datetime", "duration_ms": "duration"},
            occurred_at=played_at,
        )


class SavedTracksStream(_SpotifyStream):
    name = "saved_tracks"
    category_name = "Liked Songs"

    async def fetch(self, context: SyncContext):
        offset = 0
        while offset < SAVED_TRACKS_CAP:
            data = await get_json(
                context.client,
                f"{SPOTIFY_API_URL}/me/tracks",
                token=context.access_token,
                params={"limit": PAGE_SIZE, "offset": offset},
            )
            items = data.get("items") or []
            # Newest first: stop once we are past the window
            fresh = [item for item in items if (parse_datetime(item.get("added_at")) or context.since) >= context.since]
            if fresh:
                yield fresh
            if len(fresh) < len(items) or not data.get("next"):
                return
            offset += PAGE_SIZE

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        track = record.get("track") or {}
        if not track.get("id"):
            return None
        attributes = _track_attributes(track)
        attributes["added_at"] = record.get("added_at")
        return NormalizedItem(
            title=_track_title(track),
            external_id=track["id"],
            external_type="saved_track",
            attributes=attributes,
            attribute_types={"added_at": "datetime", "duration_ms": "duration"},
            occurred_at=parse_datetime(record.get("added_at")),
        )


class PlaylistsStream(_SpotifyStream):
    name = "playlists"
    category_name = "Playlists"

    async def fetch(self, context: SyncContext):
        offset = 0
        while offset < PLAYLISTS_CAP:
            data = await get_json(
                context.client,
                f"{SPOTIFY_API_URL}/me/playlists",
                token=context.access_token,
                params={"limit": PAGE_SIZE, "offset": offset},
            )
            items = data.get("items") or []
            if items:
                yield items
            if not data.get("next"):
                return
            offset += PAGE_SIZE

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        if not record.get("id"):
            return None
        return NormalizedItem(
            title=record.get("name") or "Untitled playlist",
            external_id=record["id"],
            external_type="playlist",
            attributes={
                "name": record.get("name"),
                "description": record.get("description"),
                "owner": (record.get("owner") or {}).get("display_name"),
                "track_count": (record.get("tracks") or {}).get("total"),
                "public": record.get("public"),
                "url": (record.get("external_urls") or {}).get("spotify"),
            },
            attribute_types={"track_count": "number"},
        )


class TopTracksStream(_SpotifyStream):
    name = "top_tracks"
    category_name = "Top Tracks"

    async def fetch(self, context: SyncContext):
        data = await get_json(
            context.client,
            f"{SPOTIFY_API_URL}/me/top/tracks",
            token=context.access_token,
            params={"limit": PAGE_SIZE, "time_range": "medium_term"},
        )
        items = data.get("items") or []
        if items:
            yield items

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        if not record.get("id"):
            return None
        return NormalizedItem(
            title=_track_title(record),
            external_id=record["id"],
            external_type="top_track",
            attributes=_track_attributes(record),
            attribute_types={"duration_ms": "duration"},
        )


class SpotifyProvider(OAuthProvider):
    provider = IntegrationProvider.SPOTIFY
    display_name = "Spotify"
    list_name = "Music"

    authorize_url = SPOTIFY_AUTHORIZE_URL
    token_url = SPOTIFY_TOKEN_URL
    scopes = [
        "user-read-recently-played",
        "user-library-read",
        "playlist-read-private",
        "user-top-read",
        "user-read-email",
    ]
    use_basic_auth = True

    async def _enrich_credential(self, credential: Credential) -> Credential:
        client = await self.get_client()
        profile = await get_json(client, f"{SPOTIFY_API_URL}/me", token=credential.access_token)
        if profile.get("id"):
            credential.provider_user_id = str(profile["id"])
        return credential

    def sync_streams(self, context: SyncContext) -> List[SyncStream]:
        return [RecentlyPlayedStream(), SavedTracksStream(), PlaylistsStream(), TopTracksStream()]
