"""Link Generator — builds link artifacts for one automation and maps them onto carriers.

Invariants:
    - The four links come from the Link Codec; this module never formats a URL itself
    - NFC carries the universal link, or the emergency QR payload when embedding
    - Share links embed data in the app link only; QR and NFC stay on the universal link
    - Embedded data is always the reduced projection, never the full summary
    - A payload over a carrier's capacity raises PayloadTooLargeError before any write
    - A False from TagIO.write raises TagWriteError

Design Decisions:
    - Capacity limits injected from settings: tag stock (NTAG213/215/216) varies per deployment
    - NFC size measured in UTF-8 bytes, QR size in characters (byte mode alphanumerics)
"""

import logging
from dataclasses import dataclass

from taplink.core import link_codec
from taplink.core.automation import AutomationSummary
from taplink.core.domain_types import IntentKind
from taplink.core.embedded_payload import reduce_automation
from taplink.core.errors import PayloadTooLargeError, TagWriteError
from taplink.core.link_codec import DEFAULT_LINK_CONFIG, LinkConfig
from taplink.core.repository_protocols import TagIO

logger = logging.getLogger(__name__)

QR = "qr"
NFC = "nfc"


@dataclass(frozen=True)
class LinkArtifacts:
    """The codec's LinkSet plus what each carrier should hold."""
    automation_id: str
    app_link: str
    universal_link: str
    web_fallback_link: str
    qr_payload: str
    nfc_payload: str
    share_text: str
    emergency: bool = False
    share: bool = False
    embedded: bool = False

    def to_dict(self) -> dict:
        return {
            "automation_id": self.automation_id,
            "app_link": self.app_link,
            "universal_link": self.universal_link,
            "web_fallback_link": self.web_fallback_link,
            "qr_payload": self.qr_payload,
            "nfc_payload": self.nfc_payload,
            "share_text": self.share_text,
            "emergency": self.emergency,
            "share": self.share,
            "embedded": self.embedded,
        }


class LinkGenerator:
    """Generates artifacts and writes tags."""

    def __init__(
        self,
        config: LinkConfig = DEFAULT_LINK_CONFIG,
        qr_max_chars: int = 4296,
        nfc_max_bytes: int = 888,
    ):
        self._config = config
        self.qr_max_chars = qr_max_chars
        self.nfc_max_bytes = nfc_max_bytes

    def generate(
        self,
        summary: AutomationSummary,
        *,
        emergency: bool = False,
        share: bool = False,
        embed: bool = False,
        carriers: tuple[str, ...] = (QR, NFC),
    ) -> LinkArtifacts:
        """Build all artifacts. Capacity is enforced for each carrier listed.

        share builds a view-only share link; with embed its app link carries the
        reduced payload while QR and NFC keep the universal link.
        """
        if share and emergency:
            raise ValueError("A link is either a share link or an emergency link")
        if share:
            kind = IntentKind.SHARE
        else:
            kind = IntentKind.EMERGENCY if emergency else IntentKind.AUTOMATION
        payload = reduce_automation(summary) if embed and (emergency or share) else None
        links = link_codec.build(
            summary.id, kind,
            embed=embed, emergency=emergency, payload=payload, config=self._config,
        )
        nfc_payload = links.qr_payload if emergency and payload is not None else links.universal_link

        if QR in carriers:
            self._check_capacity(QR, len(links.qr_payload), self.qr_max_chars)
        if NFC in carriers:
            self._check_capacity(NFC, len(nfc_payload.encode("utf-8")), self.nfc_max_bytes)

        return LinkArtifacts(
            automation_id=summary.id,
            app_link=links.app_link,
            universal_link=links.universal_link,
            web_fallback_link=links.web_fallback_link,
            qr_payload=links.qr_payload,
            nfc_payload=nfc_payload,
            share_text=self.share_text(summary),
            emergency=emergency,
            share=share,
            embedded=payload is not None,
        )

    def share_text(self, summary: AutomationSummary, message: str | None = None) -> str:
        universal = link_codec.build(summary.id, config=self._config).universal_link
        text = message or f'Check out my automation "{summary.title}"! {summary.description}'.rstrip()
        return f"{text}\n\nTry it here: {universal}"

    async def write_tag(
        self,
        tag: TagIO,
        summary: AutomationSummary,
        *,
        emergency: bool = False,
        embed: bool = False,
    ) -> str:
        """Write the NFC payload and return it. Raises TagWriteError on a refused write."""
        artifacts = self.generate(summary, emergency=emergency, embed=embed, carriers=(NFC,))
        written = await tag.write(artifacts.nfc_payload)
        if not written:
            raise TagWriteError(f"Tag write failed for automation {summary.id}")
        logger.info(
            f"Wrote {len(artifacts.nfc_payload)} chars to tag",
            extra={"automation_id": summary.id, "source": NFC},
        )
        return artifacts.nfc_payload

    async def read_tag(self, tag: TagIO) -> str:
        return await tag.read()

    def _check_capacity(self, carrier: str, size: int, limit: int) -> None:
        if size > limit:
            raise PayloadTooLargeError(carrier, size, limit)
