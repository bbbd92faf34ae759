"""
Strava adapter.

OAuth authorization-code flow; athlete activities are pulled incrementally
with `after={since}` and land in the "Activity" list, one category per sport.
"""
from typing import Any, Dict, List, Optional

from app.core.time_utils import parse_datetime, serialize_datetime
from app.integrations.base import OAuthProvider, get_json
from app.integrations.credentials import Credential
from app.integrations.sync_engine import Classification, NormalizedItem, SyncContext, SyncStream
from app.models.integration import IntegrationProvider

STRAVA_AUTHORIZE_URL = "https://www.strava.com/oauth/authorize"
STRAVA_TOKEN_URL = "https://www.strava.com/oauth/token"
STRAVA_DEAUTHORIZE_URL = "https://www.strava.com/oauth/deauthorize"
STRAVA_API_URL = "https://www.strava.com/api/v3"

ACTIVITIES_PER_PAGE = 100

# Matched in order against the lower-cased activity type
ACTIVITY_CATEGORIES = (
    ("run", "Run"),
    ("ride", "Bike"),
    ("bike", "Bike"),
    ("swim", "Swim"),
    ("walk", "Walk"),
    ("hike", "Hike"),
    ("workout", "Strength"),
    ("strength", "Strength"),
    ("weight", "Strength"),
)


def categorize_activity(activity_type: Optional[str]) -> str:
    value = (activity_type or "").lower()
    for needle, category in ACTIVITY_CATEGORIES:
        if needle in value:
            return category
    return "Other"


def _format_clock(dt) -> str:
    return dt.strftime("%Y-%m-%d %H:%M") if dt else "unknown"


class ActivitiesStream(SyncStream):
    name = "activities"
    # Strava lists ascending by start date when `after` is given
    oldest_first = True

    async def fetch(self, context: SyncContext):
        page = 1
        while True:
            activities = await get_json(
                context.client,
                f"{STRAVA_API_URL}/athlete/activities",
                token=context.access_token,
                params={"after": context.since_epoch, "per_page": ACTIVITIES_PER_PAGE, "page": page},
            )
            if not activities:
                return
            yield activities
            if len(activities) < ACTIVITIES_PER_PAGE:
                return
            page += 1

    def classify(self, record: Dict[str, Any], context: SyncContext) -> Classification:
        activity_type = record.get("sport_type") or record.get("type")
        return Classification(list_name="Activity", category_name=categorize_activity(activity_type))

    def to_item(self, record: Dict[str, Any], classification: Classification, context: SyncContext) -> Optional[NormalizedItem]:
        if record.get("id") is None:
            return None

        start = parse_datetime(record.get("start_date"))
        elapsed = record.get("elapsed_time") or 0
        end = None
        if start is not None:
            end = parse_datetime(start.timestamp() + elapsed)

        attributes = {
            "name": record.get("name"),
            "type": record.get("sport_type") or record.get("type"),
            "distance_m": record.get("distance"),
            "moving_time_s": record.get("moving_time"),
            "elapsed_time_s": elapsed,
            "elevation_gain_m": record.get("total_elevation_gain"),
            "average_speed": record.get("average_speed"),
            "start_date": serialize_datetime(start),
            "end_date": serialize_datetime(end),
        }
        return NormalizedItem(
            title=f"{classification.category_name} | {_format_clock(start)} - {_format_clock(end)}",
            external_id=str(record["id"]),
            external_type="activity",
            attributes=attributes,
            attribute_types={
                "distance_m": "number",
                "moving_time_s": "duration",
                "elapsed_time_s": "duration",
                "start_date": "datetime",
                "end_date": "datetime",
            },
            occurred_at=start,
        )


class StravaProvider(OAuthProvider):
    provider = IntegrationProvider.STRAVA
    display_name = "Strava"
    list_name = "Activity"

    authorize_url = STRAVA_AUTHORIZE_URL
    token_url = STRAVA_TOKEN_URL
    scopes = ["read", "activity:read_all"]
    scope_separator = ","
    extra_authorize_params = {"approval_prompt": "auto"}

    def _provider_user_id(self, token_data: Dict[str, Any]) -> Optional[str]:
        athlete = token_data.get("athlete") or {}
        athlete_id = athlete.get("id")
        return str(athlete_id) if athlete_id is not None else None

    def sync_streams(self, context: SyncContext) -> List[SyncStream]:
        return [ActivitiesStream()]

    async def _revoke(self, credential: Credential) -> None:
        client = await self.get_client()
        response = await client.post(STRAVA_DEAUTHORIZE_URL, data={"access_token": credential.access_token})
        response.raise_for_status()
