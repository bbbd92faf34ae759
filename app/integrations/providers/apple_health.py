"""
Apple Health adapter.

HealthKit data never leaves the device through a server-side API, so there
is nothing to poll. Instead the iOS app receives a short-lived upload token
and pushes samples to the upload endpoint; the samples run through the sync
engine as five in-memory streams.
"""
import hmac
import secrets
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from app.core.exceptions import InvalidUploadTokenError
from app.core.logging_config import log_info
from app.core.time_utils import parse_datetime, serialize_datetime, utc_now
from app.integrations.base import ProviderAdapter
from app.integrations.config import AppleHealthConfig
from app.integrations.credentials import Credential
from app.integrations.schemas import ConnectResponse, SyncResult
from app.integrations.sync_engine import Classification, NormalizedItem, StaticStream, SyncContext
from app.models.integration import IntegrationProvider

WORKOUT_TYPES = {
    "HKWorkoutActivityTypeRunning": "Run",
    "HKWorkoutActivityTypeWalking": "Walk",
    "HKWorkoutActivityTypeCycling": "Bike",
    "HKWorkoutActivityTypeSwimming": "Swim",
    "HKWorkoutActivityTypeYoga": "Yoga",
    "HKWorkoutActivityTypeTraditionalStrengthTraining": "Strength",
    "HKWorkoutActivityTypeFunctionalStrengthTraining": "Strength",
    "HKWorkoutActivityTypeStrengthTraining": "Strength",
    "HKWorkoutActivityTypeHiking": "Hike",
    "HKWorkoutActivityTypeDance": "Dance",
    "HKWorkoutActivityTypeDancing": "Dance",
    "HKWorkoutActivityTypeBasketball": "Basketball",
    "HKWorkoutActivityTypeTennis": "Tennis",
    "HKWorkoutActivityTypeGolf": "Golf",
    "HKWorkoutActivityTypeSoccer": "Soccer",
}

METRIC_TYPES = {
    "HKQuantityTypeIdentifierBodyMass": "Weight",
    "HKQuantityTypeIdentifierHeight": "Height",
    "HKQuantityTypeIdentifierBodyFatPercentage": "Body Fat",
    "HKQuantityTypeIdentifierLeanBodyMass": "Lean Body Mass",
    "HKQuantityTypeIdentifierBodyMassIndex": "BMI",
    "HKQuantityTypeIdentifierBloodPressureSystolic": "Blood Pressure (Systolic)",
    "HKQuantityTypeIdentifierBloodPressureDiastolic": "Blood Pressure (Diastolic)",
    "HKQuantityTypeIdentifierRestingHeartRate": "Resting Heart Rate",
    "HKQuantityTypeIdentifierVO2Max": "VO2 Max",
}

SUPPORTED_DATA_TYPES = ["workouts", "health_metrics", "steps", "heart_rate", "sleep"]

METERS_PER_MILE = 1609.344


def generate_upload_token(user_id: str) -> str:
    return f"ah_{user_id}_{int(utc_now().timestamp() * 1000)}_{secrets.token_hex(8)}"


def _records(health_data: Dict[str, Any], *keys: str) -> List[Dict[str, Any]]:
    """First non-empty list among snake_case / camelCase keys."""
    for key in keys:
        value = health_data.get(key)
        if value:
            return [record for record in value if isinstance(record, dict)]
    return []


def _meters_to_miles(value) -> Optional[float]:
    return value / METERS_PER_MILE if value else None


def _record_id(record: Dict[str, Any], *fallback_fields: str) -> Optional[str]:
    """Sample UUID when the device sends one, else a key derived from the sample's own fields."""
    if record.get("id"):
        return str(record["id"])
    parts = [str(record.get(field)) for field in fallback_fields if record.get(field) is not None]
    return "|".join(parts) if parts else None


class WorkoutsStream(StaticStream):
    name = "workouts"

    def classify(self, record, context) -> Classification:
        workout_type = record.get("workoutType") or record.get("workout_type")
        return Classification(list_name="Activity", category_name=WORKOUT_TYPES.get(workout_type, "Other"))

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        start = parse_datetime(record.get("startDate") or record.get("start_date"))
        end = parse_datetime(record.get("endDate") or record.get("end_date"))
        external_id = _record_id(record, "workoutType", "startDate")
        if external_id is None or start is None:
            return None
        return NormalizedItem(
            title=f"Workout | {serialize_datetime(start)} - {serialize_datetime(end)}",
            external_id=external_id,
            external_type="workout",
            attributes={
                "start_time": serialize_datetime(start),
                "end_time": serialize_datetime(end),
                "duration_minutes": record.get("duration"),
                "calories": record.get("totalEnergyBurned"),
                "distance_miles": _meters_to_miles(record.get("totalDistance")),
                "workout_type": record.get("workoutType") or record.get("workout_type"),
                "metadata": record.get("metadata") or {},
            },
            attribute_types={
                "start_time": "datetime",
                "end_time": "datetime",
                "duration_minutes": "number",
                "calories": "number",
                "distance_miles": "number",
            },
            occurred_at=start,
        )


class HealthMetricsStream(StaticStream):
    name = "health_metrics"

    def classify(self, record, context) -> Classification:
        return Classification(list_name="Health", category_name=METRIC_TYPES.get(record.get("type"), "Other Health Metric"))

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        external_id = _record_id(record, "type", "date")
        if external_id is None:
            return None
        return NormalizedItem(
            title=f"{classification.category_name} | Health Metric",
            external_id=external_id,
            external_type="metric",
            attributes={
                "date": record.get("date"),
                "value": record.get("value"),
                "unit": record.get("unit"),
                "metric_type": record.get("type"),
            },
            attribute_types={"date": "datetime", "value": "number"},
            occurred_at=parse_datetime(record.get("date")),
        )


class StepsStream(StaticStream):
    name = "steps"

    def classify(self, record, context) -> Classification:
        return Classification(list_name="Health", category_name="Steps")

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        external_id = _record_id(record, "date")
        if external_id is None:
            return None
        return NormalizedItem(
            title=f"Steps | {record.get('date')}",
            external_id=external_id,
            external_type="steps",
            attributes={
                "date": record.get("date"),
                "step_count": record.get("stepCount", record.get("step_count")),
                "distance_miles": _meters_to_miles(record.get("distance")),
            },
            attribute_types={"date": "date", "step_count": "number", "distance_miles": "number"},
            occurred_at=parse_datetime(record.get("date")),
        )


class HeartRateStream(StaticStream):
    name = "heart_rate"

    def classify(self, record, context) -> Classification:
        hr_context = record.get("context")
        return Classification(
            list_name="Health",
            category_name=f"Heart Rate ({hr_context})" if hr_context else "Heart Rate",
        )

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        external_id = _record_id(record, "date", "context")
        if external_id is None:
            return None
        return NormalizedItem(
            title=f"Heart Rate | {record.get('date')}",
            external_id=external_id,
            external_type="heart_rate",
            attributes={
                "date": record.get("date"),
                "heart_rate": record.get("value"),
                "context": record.get("context"),
            },
            attribute_types={"date": "datetime", "heart_rate": "number"},
            occurred_at=parse_datetime(record.get("date")),
        )


class SleepStream(StaticStream):
    name = "sleep"

    def classify(self, record, context) -> Classification:
        return Classification(list_name="Health", category_name=f"Sleep ({record.get('value') or 'Unknown'})")

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        start = parse_datetime(record.get("startDate") or record.get("start_date"))
        end = parse_datetime(record.get("endDate") or record.get("end_date"))
        external_id = _record_id(record, "startDate", "value")
        if external_id is None:
            return None
        return NormalizedItem(
            title=f"Sleep | {serialize_datetime(start)} - {serialize_datetime(end)}",
            external_id=external_id,
            external_type="sleep",
            attributes={
                "start_time": serialize_datetime(start),
                "end_time": serialize_datetime(end),
                "duration_minutes": record.get("duration"),
                "sleep_value": record.get("value"),
            },
            attribute_types={"start_time": "datetime", "end_time": "datetime", "duration_minutes": "number"},
            occurred_at=start,
        )


def build_upload_streams(health_data: Dict[str, Any]) -> List[StaticStream]:
    health_data = health_data or {}
    return [
        WorkoutsStream(_records(health_data, "workouts")),
        HealthMetricsStream(_records(health_data, "health_metrics", "healthMetrics")),
        StepsStream(_records(health_data, "steps")),
        HeartRateStream(_records(health_data, "heart_rate", "heartRate")),
        SleepStream(_records(health_data, "sleep")),
    ]


class AppleHealthProvider(ProviderAdapter):
    provider = IntegrationProvider.APPLE_HEALTH
    display_name = "Apple Health"
    list_name = "Health"
    # The stored "credential" is only the rotating upload token
    requires_credential = False
    sync_after_callback = False

    config: AppleHealthConfig

    async def issue_upload_token(self, user_id: str) -> Credential:
        credential = Credential(
            access_token=generate_upload_token(user_id),
            expires_at=int(utc_now().timestamp()) + self.config.upload_token_ttl_seconds,
        )
        await self.credentials.set(user_id, self.provider, credential)
        return credential

    async def verify_upload_token(self, user_id: str, upload_token: str) -> None:
        stored = await self.credentials.get(user_id, self.provider)
        if stored is None or not hmac.compare_digest(stored.access_token, upload_token or ""):
            raise InvalidUploadTokenError(self.name)
        if stored.expires_within(0):
            raise InvalidUploadTokenError(self.name, "Upload token has expired")

    async def _build_connection(self, user_id: str, state: str) -> ConnectResponse:
        credential = await self.issue_upload_token(user_id)
        query = urlencode({
            "state": state,
            "uploadToken": credential.access_token,
            "endpoint": self.config.upload_endpoint,
        })
        return ConnectResponse(
            provider=self.name,
            redirect_url=f"applehealth://connect?{query}",
            state=state,
            details={
                "upload_endpoint": self.config.upload_endpoint,
                "upload_token": credential.access_token,
                "upload_token_expires_at": credential.expires_at,
                "supported_data_types": SUPPORTED_DATA_TYPES,
            },
        )

    async def _complete_callback(self, user_id: str, payload) -> None:
        await self.verify_upload_token(user_id, payload.upload_token)
        if payload.health_data:
            await self.engine.run(self, user_id, streams=build_upload_streams(payload.health_data))

    async def handle_data_upload(self, user_id: str, upload_token: str, health_data: Dict[str, Any]) -> SyncResult:
        """Validate the device's upload token and write the uploaded samples."""
        await self.verify_upload_token(user_id, upload_token)
        result = await self.engine.run(self, user_id, streams=build_upload_streams(health_data))

        integration = await self._integration()
        link = await self.persistence.get_link(user_id, integration.id)
        if link is None or not link.is_connected:
            await self.persistence.mark_connected(user_id, integration.id)

        log_info(
            "Apple Health data uploaded",
            user_id=user_id, processed=result.details.get("processed"),
        )
        return result

    async def _status_details(self, user_id: str, credential: Optional[Credential]) -> Dict[str, Any]:
        # Connected devices get a fresh upload token on every status check
        fresh = await self.issue_upload_token(user_id)
        return {
            "upload_endpoint": self.config.upload_endpoint,
            "upload_token": fresh.access_token,
            "upload_token_expires_at": fresh.expires_at,
        }

    def sync_streams(self, context: SyncContext):
        # Data arrives by upload; a sync only records that it ran
        return []
