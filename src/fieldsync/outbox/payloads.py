"""
Typed payloads, one pydantic model per EventType.

EVENT_PAYLOADS maps every EventType to its model; a new producer action
means a new EventType member *and* a new model, otherwise this module fails
to import. Each model knows which entity it refers to and which local files
must travel with it.

Payload documents are stored camelCase (the ingest endpoint's convention).
Unknown fields are kept, so producers can send extra context without a
schema change.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class EventType(str, Enum):
    ACTIVITY_LOG = "activity-log"
    PROJECT_UPDATE = "project-update"
    TASK_UPDATE = "task-update"
    USER_DOCUMENT = "user-document"
    CLOCK_BATCH = "clock-batch"
    VEHICLE_CREATE = "vehicle-create"
    VEHICLE_TRIP = "vehicle-trip"
    VEHICLE_PURCHASE = "vehicle-purchase"
    VEHICLE_LOG = "vehicle-log"
    ASSET_CREATE = "asset-create"
    ASSET_LOG = "asset-log"
    BIOMETRIC_ENROLL = "biometric-enroll"


# Older builds queued clock batches under these tags
LEGACY_CLOCK_EVENT_TYPES = ("clock-batch-v2", "clock-batch-v1", "clocking-batch", "clocking")
CLOCK_EVENT_TYPES = (EventType.CLOCK_BATCH.value,) + LEGACY_CLOCK_EVENT_TYPES

CLOCK_OUT = "out"
CLOCK_TYPES = ("in", CLOCK_OUT, "training", "sick", "iod", "leave", "overtime")

MANUAL_METHOD = "manual"


def _present(value: Optional[str]) -> bool:
    return bool(value and str(value).strip())


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True,
    )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class EventPayload(_Document):
    """Base for every payload model."""

    event_type: ClassVar[EventType]

    def row_org_id(self) -> Optional[str]:
        return None

    def row_user_id(self) -> Optional[str]:
        return None

    def entity_ref(self) -> Optional[str]:
        return None

    def file_refs(self) -> List[str]:
        return []


class ScopedPayload(EventPayload):
    """Payload that carries its own org and acting user."""

    org_id: Optional[str] = None
    user_id: Optional[str] = None

    def row_org_id(self) -> Optional[str]:
        return self.org_id

    def row_user_id(self) -> Optional[str]:
        return self.user_id


# ─── Production ───────────────────────────────────────────────────────────────

class ActivityLogPayload(ScopedPayload):
    event_type: ClassVar[EventType] = EventType.ACTIVITY_LOG

    project_id: Optional[str] = None
    task_id: Optional[str] = None
    milestone: Optional[str] = None
    note: str = ""
    photo_uri: Optional[str] = None
    fence_json: Optional[str] = None  # {"type": "polyline", "points": [...]}

    def entity_ref(self) -> Optional[str]:
        return self.task_id or self.project_id

    def file_refs(self) -> List[str]:
        return [self.photo_uri] if self.photo_uri else []


class ProjectUpdatePayload(ScopedPayload):
    event_type: ClassVar[EventType] = EventType.PROJECT_UPDATE

    project_id: Optional[str] = None
    task_id: Optional[str] = None
    status: Optional[str] = None
    manager_note: str = ""

    @model_validator(mode="after")
    def _project_or_note(self):
        if not self.project_id and not _present(self.manager_note):
            raise ValueError("select a project and/or enter a note")
        return self

    def entity_ref(self) -> Optional[str]:
        return self.project_id


class TaskUpdatePayload(ScopedPayload):
    event_type: ClassVar[EventType] = EventType.TASK_UPDATE

    project_id: Optional[str] = None
    task_id: Optional[str] = None
    milestone: Optional[str] = None
    status: Optional[str] = None
    note: str = ""

    @model_validator(mode="after")
    def _task_or_note(self):
        if not self.task_id and not _present(self.note):
            raise ValueError("select a task and/or enter a note")
        return self

    def entity_ref(self) -> Optional[str]:
        return self.task_id


class UserDocumentPayload(ScopedPayload):
    event_type: ClassVar[EventType] = EventType.USER_DOCUMENT

    project_id: Optional[str] = None
    target_user_id: Optional[str] = None
    title: Optional[str] = None
    tag: Optional[str] = None
    photo_uri: Optional[str] = None

    @model_validator(mode="after")
    def _photo_required(self):
        if not _present(self.photo_uri):
            raise ValueError("a photo of the document is required")
        return self

    def entity_ref(self) -> Optional[str]:
        return self.project_id or self.target_user_id

    def file_refs(self) -> List[str]:
        return [self.photo_uri]


# ─── Clocking ─────────────────────────────────────────────────────────────────

class ClockPerson(_Document):
    user_id: str
    name: str = ""
    method: str = "list"  # "list" | "biometric" | "manual"
    status: str = "present"
    note: str = ""
    manual_photo_uri: Optional[str] = None

    @model_validator(mode="after")
    def _manual_needs_proof(self):
        # Manual entries are only allowed after a biometric failure and must carry proof
        if self.method == MANUAL_METHOD and not (
            _present(self.note) and _present(self.manual_photo_uri)
        ):
            who = self.name or self.user_id
            raise ValueError(f"manual clocking for {who} requires a note and a photo")
        return self


def _now_iso() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.isoformat(timespec="milliseconds") + "Z"


class ClockBatchHeader(_Document):
    org_id: Optional[str] = None
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    group_id: str
    clock_type: str
    note: str = ""
    captured_by_user_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[str] = Field(default_factory=_now_iso)
    updated_at: Optional[str] = None

    @field_validator("group_id")
    @classmethod
    def _group_required(cls, value: str) -> str:
        if not _present(value):
            raise ValueError("select a group")
        return value

    @field_validator("clock_type")
    @classmethod
    def _normalise_clock_type(cls, value: str) -> str:
        value = str(value or "").strip().lower()
        if not value:
            raise ValueError("select a clocking type")
        return value

    @model_validator(mode="after")
    def _stamp_times(self):
        if not self.created_at:
            self.created_at = _now_iso()
        if not self.updated_at:
            self.updated_at = self.created_at
        return self


class ClockBatchPayload(EventPayload):
    """A batch of people clocked together: {"batch": {...}, "people": [...]}."""

    event_type: ClassVar[EventType] = EventType.CLOCK_BATCH

    batch: ClockBatchHeader
    people: List[ClockPerson]

    @model_validator(mode="after")
    def _someone_selected(self):
        if not self.people:
            raise ValueError("select at least one person")
        return self

    def row_org_id(self) -> Optional[str]:
        return self.batch.org_id

    def row_user_id(self) -> Optional[str]:
        return self.batch.captured_by_user_id or self.batch.user_id

    def entity_ref(self) -> Optional[str]:
        return self.batch.group_id or self.batch.task_id or self.batch.project_id

    def file_refs(self) -> List[str]:
        return [p.manual_photo_uri for p in self.people if p.manual_photo_uri]


# ─── Vehicles & assets ────────────────────────────────────────────────────────

class _VehiclePayload(ScopedPayload):
    reg_number: Optional[str] = None

    @field_validator("reg_number")
    @classmethod
    def _normalise_reg(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().upper() if value else value

    @model_validator(mode="after")
    def _reg_required(self):
        if not _present(self.reg_number):
            raise ValueError("a registration number is required")
        return self

    def entity_ref(self) -> Optional[str]:
        return self.reg_number


class VehicleCreatePayload(_VehiclePayload):
    event_type: ClassVar[EventType] = EventType.VEHICLE_CREATE

    make: Optional[str] = None
    model: Optional[str] = None
    vin: Optional[str] = None
    vehicle_type: Optional[str] = None
    year: Optional[str] = None
    source: str = "disc-scan"
    disc_raw: Optional[str] = None

    @model_validator(mode="after")
    def _make_required(self):
        if not _present(self.make):
            raise ValueError("the vehicle make is required")
        return self


class VehicleTripPayload(_VehiclePayload):
    event_type: ClassVar[EventType] = EventType.VEHICLE_TRIP

    kind: str = "trip-start"  # "trip-start" | "trip-end"
    usage: Optional[str] = None  # "business" | "private"
    odometer: Optional[str] = None
    photo_uri: Optional[str] = None
    odometer_photo_uri: Optional[str] = None

    @model_validator(mode="after")
    def _trip_readings(self):
        if not _present(self.odometer):
            raise ValueError("the odometer reading is required")
        if self.kind == "trip-start" and not _present(self.usage):
            raise ValueError("select usage (business/private) to start a trip")
        return self

    def file_refs(self) -> List[str]:
        return [uri for uri in (self.photo_uri, self.odometer_photo_uri) if uri]


class VehiclePurchasePayload(_VehiclePayload):
    event_type: ClassVar[EventType] = EventType.VEHICLE_PURCHASE

    vendor: Optional[str] = None
    cost: Optional[str] = None
    odometer_photo_uri: Optional[str] = None

    def file_refs(self) -> List[str]:
        return [self.odometer_photo_uri] if self.odometer_photo_uri else []


class VehicleLogPayload(_VehiclePayload):
    event_type: ClassVar[EventType] = EventType.VEHICLE_LOG

    odometer: Optional[str] = None
    notes: Optional[str] = None
    photo_uri: Optional[str] = None

    def file_refs(self) -> List[str]:
        return [self.photo_uri] if self.photo_uri else []


class AssetCreatePayload(ScopedPayload):
    event_type: ClassVar[EventType] = EventType.ASSET_CREATE

    asset_code: Optional[str] = None
    asset_name: Optional[str] = None
    asset_category: Optional[str] = None

    @model_validator(mode="after")
    def _code_and_name(self):
        if not _present(self.asset_code):
            raise ValueError("an asset code/tag is required")
        if not _present(self.asset_name):
            raise ValueError("an asset name is required")
        return self

    def entity_ref(self) -> Optional[str]:
        return self.asset_code.strip()


class AssetLogPayload(ScopedPayload):
    event_type: ClassVar[EventType] = EventType.ASSET_LOG

    asset_code: Optional[str] = None
    note: str = ""
    photo_uri: Optional[str] = None

    @model_validator(mode="after")
    def _code_required(self):
        if not _present(self.asset_code):
            raise ValueError("an asset code/tag is required")
        return self

    def entity_ref(self) -> Optional[str]:
        return self.asset_code.strip()

    def file_refs(self) -> List[str]:
        return [self.photo_uri] if self.photo_uri else []


# ─── Biometrics ───────────────────────────────────────────────────────────────

class BiometricEnrollPayload(ScopedPayload):
    event_type: ClassVar[EventType] = EventType.BIOMETRIC_ENROLL

    target_user_id: Optional[str] = None
    group_id: Optional[str] = None
    profile_photo_uri: Optional[str] = None
    biometric_photo_uris: List[str] = []  # front, left, right
    biometric_status: str = "pending"

    @model_validator(mode="after")
    def _complete_capture(self):
        if not _present(self.target_user_id):
            raise ValueError("select a worker to enrol")
        if not _present(self.profile_photo_uri):
            raise ValueError("a profile photo is required")
        if len([uri for uri in self.biometric_photo_uris if _present(uri)]) < 3:
            raise ValueError("all 3 biometric photos (front, left, right) are required")
        return self

    def entity_ref(self) -> Optional[str]:
        return self.target_user_id

    def file_refs(self) -> List[str]:
        return [self.profile_photo_uri] + [u for u in self.biometric_photo_uris if u]


EVENT_PAYLOADS: Dict[EventType, type] = {
    model.event_type: model
    for model in (
        ActivityLogPayload,
        ProjectUpdatePayload,
        TaskUpdatePayload,
        UserDocumentPayload,
        ClockBatchPayload,
        VehicleCreatePayload,
        VehicleTripPayload,
        VehiclePurchasePayload,
        VehicleLogPayload,
        AssetCreatePayload,
        AssetLogPayload,
        BiometricEnrollPayload,
    )
}

_unmapped = set(EventType) - set(EVENT_PAYLOADS)
if _unmapped:
    raise RuntimeError(f"No payload model for event types: {sorted(t.value for t in _unmapped)}")
