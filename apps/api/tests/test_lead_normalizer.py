from __future__ import annotations

from leadops.leads.normalizer import (
    DEFAULT_DISPLAY_NAME,
    MEDIA_ONLY_MESSAGE,
    detect_provider,
    normalize_webhook_payload,
)


def _meta_payload(messages: list[dict], *, profile_name: str | None = "Maria Souza") -> dict:
    contacts = [{"profile": {"name": profile_name}, "wa_id": "5511999990000"}] if profile_name is not None else []
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "waba-1",
                "changes": [{"field": "messages", "value": {"contacts": contacts, "messages": messages}}],
            }
        ],
    }


def test_meta_text_message_becomes_lead() -> None:
    payload = _meta_payload([{"from": "5511999990000", "id": "wamid.1", "text": {"body": "  Hello there  "}}])

    result = normalize_webhook_payload(payload)

    assert result.skipped == 0
    assert len(result.leads) == 1
    lead = result.leads[0]
    assert lead.provider == "meta"
    assert lead.phone == "5511999990000"
    assert lead.name == "Maria Souza"
    assert lead.external_id == "wamid.1"
    assert lead.message == "Hello there"


def test_meta_interactive_reply_title_is_used_as_message() -> None:
    payload = _meta_payload(
        [
            {
                "from": "5511988887777",
                "id": "wamid.2",
                "type": "interactive",
                "interactive": {"button_reply": {"id": "visit", "title": "Schedule a visit"}},
            }
        ]
    )

    result = normalize_webhook_payload(payload)

    assert result.leads[0].message == "Schedule a visit"


def test_meta_status_callback_is_skipped() -> None:
    payload = {
        "entry": [{"changes": [{"value": {"statuses": [{"id": "wamid.9", "status": "delivered"}]}}]}],
    }

    result = normalize_webhook_payload(payload)

    assert result.leads == []
    assert result.skipped == 1


def test_meta_message_without_sender_is_skipped_and_missing_profile_gets_default_name() -> None:
    payload = _meta_payload(
        [
            {"id": "wamid.3", "text": {"body": "no sender"}},
            {"from": "5511977776666", "id": "wamid.4", "text": {"body": "hi"}},
        ],
        profile_name=None,
    )

    result = normalize_webhook_payload(payload)

    assert result.skipped == 1
    assert len(result.leads) == 1
    assert result.leads[0].name == DEFAULT_DISPLAY_NAME


def test_twilio_form_message_strips_whatsapp_prefix() -> None:
    payload = {
        "From": "whatsapp:+5511966665555",
        "Body": "Is the apartment still available?",
        "MessageSid": "SM123",
        "ProfileName": "Joao",
    }

    result = normalize_webhook_payload(payload)

    assert detect_provider(payload) == "twilio"
    assert len(result.leads) == 1
    lead = result.leads[0]
    assert lead.provider == "twilio"
    assert lead.phone == "+5511966665555"
    assert lead.external_id == "SM123"
    assert lead.name == "Joao"
    assert lead.message == "Is the apartment still available?"


def test_twilio_media_only_message_gets_placeholder_text() -> None:
    payload = {"From": "whatsapp:+5511955554444", "Body": "", "NumMedia": "2", "SmsMessageSid": "SM999"}

    result = normalize_webhook_payload(payload)

    assert result.leads[0].message == MEDIA_ONLY_MESSAGE
    assert result.leads[0].external_id == "SM999"
    assert result.leads[0].name == DEFAULT_DISPLAY_NAME


def test_twilio_without_sender_is_skipped() -> None:
    result = normalize_webhook_payload({"Body": "hello"}, provider_hint="twilio")

    assert result.leads == []
    assert result.skipped == 1


def test_unrecognised_payload_is_skipped() -> None:
    assert detect_provider({"foo": "bar"}) is None
    assert detect_provider(["not", "a", "dict"]) is None

    result = normalize_webhook_payload({"foo": "bar"})

    assert result.leads == []
    assert result.skipped == 1


def test_provider_hint_overrides_detection() -> None:
    payload = _meta_payload([{"from": "5511944443333", "id": "wamid.5", "text": {"body": "hi"}}])

    result = normalize_webhook_payload(payload, provider_hint="twilio")

    assert result.leads == []
    assert result.skipped == 1
