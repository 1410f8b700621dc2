"""Link Generator — artifacts, carrier capacity and tag writes.

Tests cover:
    - generate() returns the codec links plus NFC payload and share text
    - Emergency embedding puts the reduced payload in QR and NFC
    - Share links carry data in the app link only; share and emergency are exclusive
    - Over-capacity payloads raise PayloadTooLargeError per carrier
    - write_tag returns the written payload; a False write raises TagWriteError
    - read_tag feeds back what the tag holds
"""

from unittest.mock import AsyncMock

import pytest

from taplink.core import link_codec
from taplink.core.automation import AutomationSummary
from taplink.core.domain_types import IntentKind
from taplink.core.errors import PayloadTooLargeError, TagWriteError
from taplink.services.link_generator import LinkGenerator, QR

AID = "3f2b8c1e-9d4a-4e6b-8a7c-1b2d3e4f5a6b"


def _summary(message: str = "Need help") -> AutomationSummary:
    return AutomationSummary.from_record({
        "id": AID,
        "title": "Emergency",
        "description": "Text and call",
        "steps": [
            {"type": "sms", "config": {"phoneNumber": "911", "message": message}},
            {"type": "call", "config": {"phoneNumber": "911"}},
            {"type": "webhook", "config": {"url": "https://hooks.example"}},
        ],
    })


def test_generate_plain_links():
    artifacts = LinkGenerator().generate(_summary())
    assert artifacts.universal_link == f"https://zaptap.cloud/link/{AID}"
    assert artifacts.app_link == f"zaptap://automation/{AID}?action=run"
    assert artifacts.nfc_payload == artifacts.universal_link
    assert artifacts.qr_payload == artifacts.universal_link
    assert artifacts.embedded is False
    assert artifacts.universal_link in artifacts.share_text


def test_generate_emergency_embed_carries_reduced_payload():
    artifacts = LinkGenerator().generate(_summary(), emergency=True, embed=True)
    assert artifacts.embedded
    assert artifacts.web_fallback_link == f"https://zaptap.cloud/emergency/{AID}"
    assert artifacts.nfc_payload == artifacts.qr_payload
    intent = link_codec.parse(artifacts.qr_payload)
    assert intent.kind == IntentKind.EMERGENCY
    assert [s.type for s in intent.embedded_payload.steps] == ["sms", "call"]


def test_generate_share_embeds_data_in_app_link_only():
    artifacts = LinkGenerator().generate(_summary(), share=True, embed=True)
    assert artifacts.share and artifacts.embedded
    assert artifacts.app_link.startswith(f"zaptap://share/{AID}?data=")
    assert artifacts.qr_payload == artifacts.universal_link
    assert artifacts.nfc_payload == artifacts.universal_link
    intent = link_codec.parse(artifacts.app_link)
    assert intent.kind == IntentKind.SHARE
    assert intent.automation_id == AID
    assert intent.embedded_payload is None


def test_generate_share_without_embed_is_bare():
    artifacts = LinkGenerator().generate(_summary(), share=True)
    assert artifacts.app_link == f"zaptap://share/{AID}"
    assert artifacts.embedded is False


def test_generate_rejects_share_and_emergency():
    with pytest.raises(ValueError):
        LinkGenerator().generate(_summary(), share=True, emergency=True)


def test_generate_rejects_qr_over_capacity():
    generator = LinkGenerator(qr_max_chars=200)
    with pytest.raises(PayloadTooLargeError) as exc:
        generator.generate(_summary("x" * 300), emergency=True, embed=True)
    assert exc.value.carrier == "qr"
    assert exc.value.http_status == 413


def test_generate_rejects_nfc_over_capacity():
    generator = LinkGenerator(nfc_max_bytes=100)
    with pytest.raises(PayloadTooLargeError) as exc:
        generator.generate(_summary(), emergency=True, embed=True)
    assert exc.value.carrier == "nfc"


def test_generate_qr_only_skips_nfc_limit():
    generator = LinkGenerator(nfc_max_bytes=100)
    artifacts = generator.generate(_summary(), emergency=True, embed=True, carriers=(QR,))
    assert artifacts.embedded


def test_share_text_custom_message():
    text = LinkGenerator().share_text(_summary(), "Try this")
    assert text == f"Try this\n\nTry it here: https://zaptap.cloud/link/{AID}"


async def test_write_tag_returns_payload():
    tag = AsyncMock()
    tag.write.return_value = True
    written = await LinkGenerator().write_tag(tag, _summary())
    assert written == f"https://zaptap.cloud/link/{AID}"
    tag.write.assert_awaited_once_with(written)


async def test_write_tag_failure_raises():
    tag = AsyncMock()
    tag.write.return_value = False
    with pytest.raises(TagWriteError):
        await LinkGenerator().write_tag(tag, _summary())


async def test_write_tag_checks_capacity_before_writing():
    tag = AsyncMock()
    with pytest.raises(PayloadTooLargeError):
        await LinkGenerator(nfc_max_bytes=50).write_tag(
            tag, _summary(), emergency=True, embed=True,
        )
    tag.write.assert_not_called()


async def test_read_tag():
    tag = AsyncMock()
    tag.read.return_value = f"https://zaptap.cloud/link/{AID}"
    assert await LinkGenerator().read_tag(tag) == f"https://zaptap.cloud/link/{AID}"
