"""
EventRecorder: the producer-facing side of the outbox.

One method per domain action. Each method validates the action with its
payload model, works out entity_ref and the files to upload, and appends a
pending event. Invalid input raises ValidationError before anything touches
the store.
"""
import logging
from typing import Any, Dict, Mapping, Sequence

from pydantic import ValidationError as PydanticValidationError

from fieldsync.errors import ValidationError
from fieldsync.outbox.payloads import (
    ActivityLogPayload,
    AssetCreatePayload,
    AssetLogPayload,
    BiometricEnrollPayload,
    ClockBatchPayload,
    EventPayload,
    ProjectUpdatePayload,
    TaskUpdatePayload,
    UserDocumentPayload,
    VehicleCreatePayload,
    VehicleLogPayload,
    VehiclePurchasePayload,
    VehicleTripPayload,
)
from fieldsync.outbox.queue import OutboxQueue

logger = logging.getLogger(__name__)


class EventRecorder:
    """Turns producer actions into queued outbox events."""

    def __init__(self, queue: OutboxQueue):
        self.queue = queue

    # ── Production ────────────────────────────────────────────────────────────

    def record_activity(self, **fields: Any) -> int:
        return self._record(ActivityLogPayload, fields)

    def update_project(self, **fields: Any) -> int:
        return self._record(ProjectUpdatePayload, fields)

    def update_task(self, **fields: Any) -> int:
        return self._record(TaskUpdatePayload, fields)

    def attach_document(self, **fields: Any) -> int:
        return self._record(UserDocumentPayload, fields)

    # ── Clocking ──────────────────────────────────────────────────────────────

    def record_clock_batch(
        self,
        batch: Mapping[str, Any],
        people: Sequence[Mapping[str, Any]],
    ) -> int:
        """
        Queue one clocking batch.

        Args:
            batch: header with groupId, clockType, and optionally orgId,
                   projectId, taskId, note, capturedByUserId, createdAt and
                   updatedAt (both default to now, UTC).
            people: one entry per person with userId, name, method
                    ("list" / "biometric" / "manual"), status, note,
                    manualPhotoUri. Manual entries need a note and a photo.
        """
        return self._record(
            ClockBatchPayload,
            {"batch": dict(batch or {}), "people": [dict(p) for p in people or []]},
        )

    # ── Vehicles & assets ─────────────────────────────────────────────────────

    def create_vehicle(self, **fields: Any) -> int:
        return self._record(VehicleCreatePayload, fields)

    def log_vehicle_trip(self, **fields: Any) -> int:
        return self._record(VehicleTripPayload, fields)

    def record_vehicle_purchase(self, **fields: Any) -> int:
        return self._record(VehiclePurchasePayload, fields)

    def log_vehicle(self, **fields: Any) -> int:
        return self._record(VehicleLogPayload, fields)

    def create_asset(self, **fields: Any) -> int:
        return self._record(AssetCreatePayload, fields)

    def log_asset(self, **fields: Any) -> int:
        return self._record(AssetLogPayload, fields)

    # ── Biometrics ────────────────────────────────────────────────────────────

    def enroll_biometric(self, **fields: Any) -> int:
        return self._record(BiometricEnrollPayload, fields)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _record(self, model: type, fields: Dict[str, Any]) -> int:
        payload = validate_payload(model, fields)
        return self.queue.append(
            payload.event_type.value,
            org_id=payload.row_org_id(),
            user_id=payload.row_user_id(),
            entity_ref=payload.entity_ref(),
            payload=payload.to_document(),
            file_refs=payload.file_refs(),
        )


def validate_payload(model: type, fields: Mapping[str, Any]) -> EventPayload:
    """Build `model` from `fields`, raising ValidationError with a readable message."""
    try:
        return model.model_validate(dict(fields))
    except PydanticValidationError as exc:
        message = f"{model.event_type.value}: {describe_errors(exc)}"
        logger.info("Rejected %s", message)
        raise ValidationError(message) from exc


def describe_errors(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        msg = str(error.get("msg", "")).removeprefix("Value error, ")
        loc = ".".join(str(p) for p in error.get("loc", ()))
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)
