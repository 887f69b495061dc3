"""Canonicalization of inbound chat-provider webhook bodies.

Two wire formats are understood: the Meta Cloud API shape
(``entry[].changes[].value.messages[]``) and the Twilio form shape
(``From``/``Body``/``MessageSid``). Everything here is pure.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Literal

Provider = Literal["meta", "twilio"]

DEFAULT_DISPLAY_NAME = "WhatsApp contact"
MEDIA_ONLY_MESSAGE = "Media message (no text)."

_WHATSAPP_PREFIX_RE = re.compile(r"^whatsapp:", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class NormalizedLead:
    provider: Provider
    external_id: str | None
    name: str
    phone: str
    message: str | None


@dataclass(slots=True)
class NormalizationResult:
    leads: list[NormalizedLead] = field(default_factory=list)
    skipped: int = 0


def _clean_text(value: Any, max_length: int = 2000) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return trimmed[:max_length]


def _clean_phone(value: Any, max_length: int = 80) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = _WHATSAPP_PREFIX_RE.sub("", value).strip()
    if not normalized:
        return None
    return normalized[:max_length]


def _display_name(value: Any) -> str:
    return _clean_text(value, 120) or DEFAULT_DISPLAY_NAME


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _media_count(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        count = float(value)
    except (TypeError, ValueError):
        return 0.0
    return count if math.isfinite(count) else 0.0


def _extract_meta_text(message: dict[str, Any]) -> str | None:
    interactive = _as_dict(message.get("interactive"))
    candidates = (
        _as_dict(message.get("text")).get("body"),
        _as_dict(message.get("button")).get("text"),
        _as_dict(interactive.get("list_reply")).get("title"),
        _as_dict(interactive.get("button_reply")).get("title"),
    )
    for candidate in candidates:
        text = _clean_text(candidate)
        if text:
            return text
    return None


def _normalize_meta(payload: Any) -> NormalizationResult:
    result = NormalizationResult()
    for entry in _as_list(_as_dict(payload).get("entry")):
        for change in _as_list(_as_dict(entry).get("changes")):
            value = _as_dict(_as_dict(change).get("value"))
            contacts = _as_list(value.get("contacts"))
            first_contact = _as_dict(contacts[0]) if contacts else {}
            profile_name = _as_dict(first_contact.get("profile")).get("name") or first_contact.get("profile_name")
            name = _display_name(profile_name)

            messages = _as_list(value.get("messages"))
            if not messages:
                # status/delivery callbacks carry no messages
                result.skipped += 1
                continue

            for raw_message in messages:
                message = _as_dict(raw_message)
                phone = _clean_phone(message.get("from"))
                if phone is None:
                    result.skipped += 1
                    continue
                result.leads.append(
                    NormalizedLead(
                        provider="meta",
                        external_id=_clean_text(message.get("id"), 200),
                        name=name,
                        phone=phone,
                        message=_extract_meta_text(message),
                    )
                )
    return result


def _normalize_twilio(payload: Any) -> NormalizationResult:
    body = _as_dict(payload)
    phone = _clean_phone(body.get("From"))
    if phone is None:
        return NormalizationResult(skipped=1)

    message = _clean_text(body.get("Body"))
    if message is None and _media_count(body.get("NumMedia")) > 0:
        message = MEDIA_ONLY_MESSAGE

    lead = NormalizedLead(
        provider="twilio",
        external_id=_clean_text(body.get("MessageSid") or body.get("SmsMessageSid"), 200),
        name=_display_name(body.get("ProfileName")),
        phone=phone,
        message=message,
    )
    return NormalizationResult(leads=[lead])


def detect_provider(payload: Any) -> Provider | None:
    body = _as_dict(payload)
    if any(isinstance(body.get(key), str) for key in ("MessageSid", "SmsMessageSid", "From")):
        return "twilio"
    if isinstance(body.get("entry"), list):
        return "meta"
    return None


def normalize_webhook_payload(payload: Any, provider_hint: str | None = None) -> NormalizationResult:
    hint = (provider_hint or "").strip().lower()
    provider = hint if hint in ("meta", "twilio") else detect_provider(payload)
    if provider == "twilio":
        return _normalize_twilio(payload)
    if provider == "meta":
        return _normalize_meta(payload)
    return NormalizationResult(skipped=1)
