"""Tests for IngestClient. HTTP is mocked with respx; no real network calls."""
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import respx

from fieldsync.errors import SubmissionError
from fieldsync.models.event import OfflineEvent
from fieldsync.sync.client import (
    INGEST_PATH,
    IngestClient,
    build_envelope,
    guess_file_meta,
    infer_server_stage,
)

BASE_URL = "https://ops.example.com"
INGEST_URL = BASE_URL + INGEST_PATH


def _event(event_id=7, file_refs=None, **overrides):
    fields = dict(
        id=event_id,
        event_type="task-update",
        org_id="org-1",
        user_id="u-1",
        entity_ref="T1",
        payload_json=json.dumps({"taskId": "T1", "status": "done"}),
        file_refs_json=json.dumps(file_refs or []),
        created_at=datetime(2025, 1, 15, 7, 30, 0, 123456, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return OfflineEvent(**fields)


class TestBuildEnvelope:
    def test_fields(self):
        envelope = build_envelope(_event())
        assert envelope == {
            "localId": 7,
            "eventType": "task-update",
            "orgId": "org-1",
            "userId": "u-1",
            "entityRef": "T1",
            "payload": {"taskId": "T1", "status": "done"},
            "fileRefs": [],
            "createdAt": "2025-01-15T07:30:00.123Z",
        }

    def test_created_at_read_back_naive_is_treated_as_utc(self):
        event = _event()
        event.created_at = datetime(2025, 1, 15, 7, 30, 0, 123456)
        assert build_envelope(event)["createdAt"] == "2025-01-15T07:30:00.123Z"

    def test_created_at_with_offset_converted_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        event = _event(created_at=datetime(2025, 1, 15, 9, 30, tzinfo=plus_two))
        assert build_envelope(event)["createdAt"] == "2025-01-15T07:30:00.000Z"


class TestGuessFileMeta:
    def test_png(self):
        assert guess_file_meta("/photos/a.png", "offline_x_1_0") == {
            "type": "image/png",
            "name": "offline_x_1_0.png",
        }

    def test_unknown_extension_defaults_to_jpeg(self):
        meta = guess_file_meta("/photos/capture", "offline_x_1_0")
        assert meta == {"type": "image/jpeg", "name": "offline_x_1_0.jpg"}


class TestInferServerStage:
    def test_applied_from_stage(self):
        assert infer_server_stage({"stage": "applied"}) == "applied"

    def test_applied_from_status(self):
        assert infer_server_stage({"status": "APPLIED"}) == "applied"

    def test_anything_else_is_received(self):
        assert infer_server_stage({"ok": True}) == "received"
        assert infer_server_stage({"stage": "queued"}) == "received"


class TestSubmitJson:
    @pytest.mark.asyncio
    async def test_posts_envelope_with_headers(self, respx_mock: respx.MockRouter):
        route = respx_mock.post(INGEST_URL).mock(
            return_value=httpx.Response(200, json={"ok": True, "stage": "applied"})
        )

        async with IngestClient(BASE_URL + "/", token="tok", org_id="org-1") as client:
            response = await client.submit(_event())

        assert response == {"ok": True, "stage": "applied"}
        assert route.called
        request = route.calls.last.request
        assert request.headers["authorization"] == "Bearer tok"
        assert request.headers["x-org-id"] == "org-1"
        assert request.headers["content-type"] == "application/json"
        body = json.loads(request.content)
        assert body["localId"] == 7
        assert body["payload"] == {"taskId": "T1", "status": "done"}

    @pytest.mark.asyncio
    async def test_no_auth_headers_when_unset(self, respx_mock: respx.MockRouter):
        route = respx_mock.post(INGEST_URL).mock(
            return_value=httpx.Response(200, json={"ok": True})
        )

        async with IngestClient(BASE_URL) as client:
            await client.submit(_event())

        headers = route.calls.last.request.headers
        assert "authorization" not in headers
        assert "x-org-id" not in headers

    @pytest.mark.asyncio
    async def test_empty_success_body_means_received(self, respx_mock: respx.MockRouter):
        respx_mock.post(INGEST_URL).mock(return_value=httpx.Response(204))

        async with IngestClient(BASE_URL) as client:
            response = await client.submit(_event())

        assert response == {"ok": True, "stage": "received"}

    @pytest.mark.asyncio
    async def test_non_json_success_body_means_received(self, respx_mock: respx.MockRouter):
        respx_mock.post(INGEST_URL).mock(return_value=httpx.Response(200, text="OK"))

        async with IngestClient(BASE_URL) as client:
            response = await client.submit(_event())

        assert infer_server_stage(response) == "received"


class TestSubmitErrors:
    @pytest.mark.asyncio
    async def test_error_field_becomes_message(self, respx_mock: respx.MockRouter):
        respx_mock.post(INGEST_URL).mock(
            return_value=httpx.Response(422, json={"error": "Unknown task"})
        )

        async with IngestClient(BASE_URL) as client:
            with pytest.raises(SubmissionError) as exc_info:
                await client.submit(_event())

        assert str(exc_info.value) == "Unknown task"
        assert exc_info.value.status_code == 422
        assert exc_info.value.body == {"error": "Unknown task"}

    @pytest.mark.asyncio
    async def test_message_field_becomes_message(self, respx_mock: respx.MockRouter):
        respx_mock.post(INGEST_URL).mock(
            return_value=httpx.Response(400, json={"message": "Bad orgId"})
        )

        async with IngestClient(BASE_URL) as client:
            with pytest.raises(SubmissionError, match="Bad orgId"):
                await client.submit(_event())

    @pytest.mark.asyncio
    async def test_plain_text_body_becomes_message(self, respx_mock: respx.MockRouter):
        respx_mock.post(INGEST_URL).mock(return_value=httpx.Response(502, text="Bad Gateway"))

        async with IngestClient(BASE_URL) as client:
            with pytest.raises(SubmissionError, match="Bad Gateway") as exc_info:
                await client.submit(_event())

        assert exc_info.value.body == {"raw": "Bad Gateway"}

    @pytest.mark.asyncio
    async def test_empty_error_body_uses_status(self, respx_mock: respx.MockRouter):
        respx_mock.post(INGEST_URL).mock(return_value=httpx.Response(500))

        async with IngestClient(BASE_URL) as client:
            with pytest.raises(SubmissionError) as exc_info:
                await client.submit(_event())

        assert str(exc_info.value) == "HTTP 500"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_network_error(self, respx_mock: respx.MockRouter):
        respx_mock.post(INGEST_URL).mock(side_effect=httpx.ConnectError("Connection failed"))

        async with IngestClient(BASE_URL) as client:
            with pytest.raises(SubmissionError, match="Connection failed") as exc_info:
                await client.submit(_event())

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_timeout(self, respx_mock: respx.MockRouter):
        respx_mock.post(INGEST_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        async with IngestClient(BASE_URL) as client:
            with pytest.raises(SubmissionError, match="timed out"):
                await client.submit(_event())


class TestSubmitMultipart:
    @pytest.mark.asyncio
    async def test_files_sent_as_multipart(self, tmp_path, respx_mock: respx.MockRouter):
        photo = tmp_path / "odo.png"
        photo.write_bytes(b"\x89PNG-odometer")
        route = respx_mock.post(INGEST_URL).mock(
            return_value=httpx.Response(200, json={"ok": True, "stage": "received"})
        )

        event = _event(file_refs=[f"file://{photo}"], event_type="vehicle-trip")
        async with IngestClient(BASE_URL) as client:
            response = await client.submit(event)

        assert response["stage"] == "received"
        request = route.calls.last.request
        assert request.headers["content-type"].startswith("multipart/form-data; boundary=")
        body = request.content
        assert b'name="payloadJson"' in body
        assert b'name="localId"' in body
        assert b'name="files"; filename="offline_vehicle-trip_7_0.png"' in body
        assert b"\x89PNG-odometer" in body
        assert b"Content-Type: image/png" in body

    @pytest.mark.asyncio
    async def test_missing_local_file_is_submission_error(self, tmp_path):
        event = _event(file_refs=[str(tmp_path / "gone.jpg")])

        async with IngestClient(BASE_URL) as client:
            with pytest.raises(SubmissionError, match="Cannot read local file"):
                await client.submit(event)


class TestFromSettings:
    def test_uses_settings(self):
        class FakeSettings:
            api_base_url = "https://ops.example.com"
            api_token = "secret"
            org_id = "org-9"
            request_timeout_seconds = 5.0

        client = IngestClient.from_settings(FakeSettings())
        assert client._client.headers["authorization"] == "Bearer secret"
        assert client._client.headers["x-org-id"] == "org-9"
        assert client._client.base_url.host == "ops.example.com"
