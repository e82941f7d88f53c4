"""Tests for webhook payload normalization."""

from __future__ import annotations

import pytest

from evolution_api.exceptions import InvalidPayloadError
from evolution_api.models import WebhookEvent
from evolution_api.webhook.models import WebhookPayload, WebhookResponse
from tests.conftest import make_webhook_body


class TestFromPayload:
    def test_event_and_instance_extracted(self) -> None:
        payload = WebhookPayload.from_payload(make_webhook_body())
        assert payload.event == "MESSAGES_UPSERT"
        assert payload.instance_name == "main"
        assert "event" not in payload.data
        assert "instance" not in payload.data
        assert payload.data["sender"] == {"pushName": "Alice"}

    def test_instance_name_key_used_when_instance_absent(self) -> None:
        body = make_webhook_body()
        del body["instance"]
        body["instanceName"] = "other"
        payload = WebhookPayload.from_payload(body)
        assert payload.instance_name == "other"
        assert "instanceName" not in payload.data

    def test_instance_preferred_over_instance_name(self) -> None:
        body = make_webhook_body(instance="first", instanceName="second")
        assert WebhookPayload.from_payload(body).instance_name == "first"

    def test_empty_instance_falls_through(self) -> None:
        body = make_webhook_body(instance="", instanceName="second")
        assert WebhookPayload.from_payload(body).instance_name == "second"

    def test_missing_instance_is_none(self) -> None:
        assert WebhookPayload.from_payload({"event": "CALL"}).instance_name is None

    @pytest.mark.parametrize("body", [{}, {"event": ""}, {"event": "  "}, {"event": 5}])
    def test_missing_or_empty_event_rejected(self, body: dict) -> None:
        with pytest.raises(InvalidPayloadError) as exc_info:
            WebhookPayload.from_payload(body)
        assert exc_info.value.message == "Invalid payload"
        assert exc_info.value.status_code == 400

    def test_api_key_captured(self) -> None:
        payload = WebhookPayload.from_payload(make_webhook_body(apikey="secret-key"))
        assert payload.api_key == "secret-key"

    def test_to_payload_restores_envelope(self) -> None:
        body = make_webhook_body()
        payload = WebhookPayload.from_payload(body)
        assert payload.to_payload() == body


class TestEventMatching:
    @pytest.mark.parametrize(
        "raw", ["MESSAGES_UPSERT", "messages.upsert", "messages-upsert", "Messages_Upsert"],
    )
    def test_both_spellings_match(self, raw: str) -> None:
        payload = WebhookPayload.from_payload({"event": raw})
        assert payload.webhook_event is WebhookEvent.MESSAGES_UPSERT

    def test_unknown_event(self) -> None:
        payload = WebhookPayload.from_payload({"event": "something.new"})
        assert payload.webhook_event is WebhookEvent.UNKNOWN

    def test_event_categories(self) -> None:
        assert WebhookEvent.MESSAGES_UPDATE.is_message_event()
        assert WebhookEvent.QRCODE_UPDATED.is_connection_event()
        assert WebhookEvent.GROUP_PARTICIPANTS_UPDATE.is_group_event()
        assert not WebhookEvent.CALL.is_message_event()


class TestAccessors:
    def test_dotted_get(self) -> None:
        payload = WebhookPayload.from_payload(make_webhook_body())
        assert payload.get("data.key.id") == "MSG-1"
        assert payload.get("data.key.missing", "fallback") == "fallback"
        assert payload.get("data.message.conversation.deeper") is None

    def test_message_helpers(self) -> None:
        payload = WebhookPayload.from_payload(make_webhook_body())
        assert payload.message_id == "MSG-1"
        assert payload.remote_jid == "5511999999999@s.whatsapp.net"
        assert not payload.is_from_group
        assert payload.message_data["message"] == {"conversation": "hello"}
        assert payload.sender_data == {"pushName": "Alice"}

    def test_group_detection(self) -> None:
        body = make_webhook_body()
        body["data"]["key"]["remoteJid"] = "123-456@g.us"
        assert WebhookPayload.from_payload(body).is_from_group

    def test_connection_and_qr_helpers(self) -> None:
        payload = WebhookPayload.from_payload({
            "event": "QRCODE_UPDATED",
            "data": {"qrcode": {"base64": "data:image/png;base64,AAA"}, "pairingCode": "ABCD"},
        })
        assert payload.qr_code == "data:image/png;base64,AAA"
        assert payload.pairing_code == "ABCD"

        conn = WebhookPayload.from_payload({"event": "CONNECTION_UPDATE", "data": {"state": "open"}})
        assert conn.connection_status == "open"


def test_webhook_response_bodies() -> None:
    assert WebhookResponse.success("ok").body == {"status": "success", "message": "ok"}
    error = WebhookResponse.error(400, "Invalid payload")
    assert error.status_code == 400
    assert error.body == {"status": "error", "message": "Invalid payload"}
