"""
Async client for the remote offline-event ingest endpoint.

One call per event, POST /api/mobile/offline-events:
  - no files   → JSON body {localId, eventType, orgId, userId, entityRef,
                 payload, fileRefs, createdAt}
  - with files → multipart/form-data with the same fields (payload as
                 payloadJson) plus one "files" part per local file

The server must treat a repeated localId as the same event.
Every failure (transport, timeout, non-2xx, unreadable local file) is
raised as SubmissionError.
"""
import json
import mimetypes
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from fieldsync.errors import SubmissionError
from fieldsync.models.event import OfflineEvent, ServerStage, as_utc

INGEST_PATH = "/api/mobile/offline-events"
DEFAULT_FILE_TYPE = "image/jpeg"


def build_envelope(event: OfflineEvent) -> Dict[str, Any]:
    """The submission body for one queued event."""
    return {
        "localId": event.id,
        "eventType": event.event_type,
        "orgId": event.org_id,
        "userId": event.user_id,
        "entityRef": event.entity_ref,
        "payload": event.payload,
        "fileRefs": event.file_refs,
        "createdAt": _iso(event),
    }


def _iso(event: OfflineEvent) -> Optional[str]:
    created_at = as_utc(event.created_at)
    if created_at is None:
        return None
    return created_at.replace(tzinfo=None).isoformat(timespec="milliseconds") + "Z"


def guess_file_meta(path: str, stem: str) -> Dict[str, str]:
    """Content type and upload name for a local file; unknown types go up as JPEG."""
    content_type, _ = mimetypes.guess_type(str(path))
    if not content_type:
        content_type = DEFAULT_FILE_TYPE
    ext = Path(str(path)).suffix.lstrip(".").lower() or "jpg"
    return {"type": content_type, "name": f"{stem}.{ext}"}


class IngestClient:
    """Submits outbox events to the remote system over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        org_id: str = "",
        timeout: float = 30.0,
    ):
        """
        Args:
            base_url: Remote API root, e.g. https://ops.example.com
            token: Bearer token; omitted from headers when empty.
            org_id: Sent as x-org-id when set.
            timeout: Per-request timeout in seconds.
        """
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if org_id:
            headers["x-org-id"] = org_id
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings) -> "IngestClient":
        return cls(
            base_url=settings.api_base_url,
            token=settings.api_token,
            org_id=settings.org_id,
            timeout=settings.request_timeout_seconds,
        )

    async def submit(self, event: OfflineEvent) -> Dict[str, Any]:
        """
        Deliver one event.

        Returns:
            The decoded response body; {"ok": True, "stage": "received"}
            when the server sends none.

        Raises:
            SubmissionError: for any delivery failure.
        """
        envelope = build_envelope(event)
        try:
            if envelope["fileRefs"]:
                response = await self._post_multipart(envelope)
            else:
                response = await self._client.post(INGEST_PATH, json=envelope)
        except httpx.HTTPError as exc:
            raise SubmissionError(str(exc) or exc.__class__.__name__) from exc
        return _parse_response(response)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "IngestClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _post_multipart(self, envelope: Dict[str, Any]) -> httpx.Response:
        data = {
            "localId": str(envelope["localId"]),
            "eventType": str(envelope["eventType"] or ""),
            "orgId": str(envelope["orgId"] or ""),
            "userId": str(envelope["userId"] or ""),
            "entityRef": str(envelope["entityRef"] or ""),
            "createdAt": str(envelope["createdAt"] or ""),
            "payloadJson": json.dumps(envelope["payload"] or {}),
        }
        files = []
        for idx, ref in enumerate(envelope["fileRefs"]):
            meta = guess_file_meta(
                ref, f"offline_{envelope['eventType']}_{envelope['localId']}_{idx}"
            )
            files.append(("files", (meta["name"], _read_file(ref), meta["type"])))
        # httpx sets the multipart boundary; never pass a Content-Type here
        return await self._client.post(INGEST_PATH, data=data, files=files)


def _read_file(ref: str) -> bytes:
    path = Path(ref.removeprefix("file://"))
    try:
        return path.read_bytes()
    except OSError as exc:
        raise SubmissionError(f"Cannot read local file {ref}: {exc}") from exc


def _parse_response(response: httpx.Response) -> Dict[str, Any]:
    text = response.text
    try:
        body = json.loads(text) if text else None
    except ValueError:
        body = None

    if not response.is_success:
        message = None
        if isinstance(body, dict):
            message = body.get("error") or body.get("message")
        raise SubmissionError(
            str(message or text or f"HTTP {response.status_code}"),
            status_code=response.status_code,
            body=body if body is not None else {"raw": text},
        )

    if not isinstance(body, dict):
        return {"ok": True, "stage": "received"}
    return body


def infer_server_stage(response: Dict[str, Any]) -> str:
    """'applied' when the server says it processed the event, otherwise 'received'."""
    stage = str(response.get("stage") or response.get("status") or "").lower()
    if stage == ServerStage.APPLIED.value:
        return ServerStage.APPLIED.value
    return ServerStage.RECEIVED.value
