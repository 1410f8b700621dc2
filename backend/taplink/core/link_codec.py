"""Link Codec — pure build/parse functions for every automation URL representation.

Invariants:
    - All functions are PURE: no IO, no async, no logging, no side effects
    - parse() is total: any input yields a LinkIntent or None, never an exception
    - universal_link is always <web_domain>/link/<id>, whatever the intent kind
    - qr_payload embeds data only when emergency AND embed, and only the reduced payload
    - extract_id(build(id, kind).universal_link) == id for every valid id
    - Share app links may carry data for viewing, but parse() drops it: share is view-only

Design Decisions:
    - Order-sensitive rule tables (_KIND_RULES, _ID_PATTERNS) over nested ifs: the priority
      order is part of the contract, so it lives in one visible list
    - Emergency beats share beats the automation default: a path naming both
      /emergency/ and /link/ is an emergency
    - Tooling URLs (dev clients) and foreign hosts return None without a log line;
      the dispatcher decides what to log via is_actionable_domain()
    - Payload text decoded once, then again if still percent-encoded: older releases
      double-encoded the data parameter
"""

import json
import re
from dataclasses import dataclass
from urllib.parse import quote, unquote, urlsplit, SplitResult

from taplink.core.domain_types import IntentKind
from taplink.core.embedded_payload import EmbeddedPayload


@dataclass(frozen=True)
class LinkConfig:
    """Schemes and domain the codec recognizes. Built from Settings.link_config()."""
    app_scheme: str = "zaptap"
    legacy_schemes: tuple[str, ...] = ("shortcuts-like",)
    web_domain: str = "https://zaptap.cloud"
    ignored_markers: tuple[str, ...] = ("expo-development-client", "exp+zaptap://")

    @property
    def base_url(self) -> str:
        return self.web_domain.rstrip("/")

    @property
    def schemes(self) -> frozenset[str]:
        return frozenset(
            s.lower() for s in (self.app_scheme, *self.legacy_schemes)
        )

    @property
    def web_hosts(self) -> frozenset[str]:
        host = (urlsplit(self.base_url).hostname or "").lower()
        bare = host.removeprefix("www.")
        return frozenset({bare, f"www.{bare}"})


DEFAULT_LINK_CONFIG = LinkConfig()


@dataclass(frozen=True)
class LinkIntent:
    """One classified transport event. Lives for a single dispatch cycle."""
    kind: IntentKind
    automation_id: str
    action: str | None = None
    embedded_payload: EmbeddedPayload | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "automation_id": self.automation_id,
            "action": self.action,
            "embedded_payload": (
                self.embedded_payload.to_dict() if self.embedded_payload else None
            ),
        }


@dataclass(frozen=True)
class LinkSet:
    """Every representation of one automation link."""
    app_link: str
    universal_link: str
    web_fallback_link: str
    qr_payload: str


# ─── Rule Tables (order is contract) ────────────────────────────

# Explicit kind segments on universal links. First match wins.
_KIND_RULES: tuple[tuple[re.Pattern, IntentKind], ...] = (
    (re.compile(r"/emergency/"), IntentKind.EMERGENCY),
    (re.compile(r"/share/"), IntentKind.SHARE),
)

# Id placements, tried in this order by extract_id().
_ID_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"/link/([^/?#]+)"),
    re.compile(r"/run/([^/?#]+)"),
    re.compile(r"/emergency/([^/?#]+)"),
    re.compile(r"automation/([^/?#]+)"),
)

# Share universal links place the id after /share/ only.
_SHARE_ID_PATTERN = re.compile(r"/share/([^/?#]+)")

_APP_LINK_KINDS = {k.value: k for k in IntentKind}

DEFAULT_ACTION = "run"


# ─── Payload Encoding ───────────────────────────────────────────

def encode_payload(payload: EmbeddedPayload) -> str:
    """Compact JSON, percent-encoded for use as a query value."""
    text = json.dumps(payload.to_dict(), separators=(",", ":"), ensure_ascii=False)
    return quote(text, safe="")


def decode_payload(encoded: str | None) -> EmbeddedPayload | None:
    """Inverse of encode_payload. Returns None for anything undecodable."""
    if not encoded:
        return None
    text = unquote(encoded)
    for _ in range(2):
        try:
            return EmbeddedPayload.from_dict(json.loads(text))
        except (ValueError, RecursionError):
            if "%" not in text:
                return None
            text = unquote(text)
    return None


def load_payload(text: str | None) -> EmbeddedPayload | None:
    """Parse a payload whose query value was already unescaped by a web framework."""
    if not text:
        return None
    try:
        return EmbeddedPayload.from_dict(json.loads(text))
    except (ValueError, RecursionError):
        return decode_payload(text) if "%" in text else None


# ─── Build ──────────────────────────────────────────────────────

def build(
    automation_id: str,
    kind: IntentKind | str = IntentKind.AUTOMATION,
    *,
    embed: bool = False,
    emergency: bool = False,
    payload: EmbeddedPayload | None = None,
    config: LinkConfig = DEFAULT_LINK_CONFIG,
) -> LinkSet:
    """Build app, universal, web-fallback and QR representations for one automation.

    payload must be the reduced projection (see embedded_payload.reduce_automation);
    it is required when emergency and embed are both set.
    """
    kind = IntentKind(kind)
    emergency = emergency or kind == IntentKind.EMERGENCY
    base = config.base_url

    if emergency and embed and payload is None:
        raise ValueError("emergency embedding requires a reduced payload")
    share_data = kind == IntentKind.SHARE and embed and payload is not None
    encoded = encode_payload(payload) if (emergency and embed) or share_data else None

    app_link = f"{config.app_scheme}://{kind.value}/{automation_id}"
    if kind == IntentKind.AUTOMATION:
        app_link += f"?action={DEFAULT_ACTION}"
    elif encoded:
        app_link += f"?data={encoded}"

    universal_link = f"{base}/link/{automation_id}"
    web_path = "emergency" if emergency else "run"
    web_fallback_link = f"{base}/{web_path}/{automation_id}"

    qr_payload = universal_link
    if encoded and emergency:
        qr_payload = f"{base}/emergency/{automation_id}?data={encoded}"

    return LinkSet(
        app_link=app_link,
        universal_link=universal_link,
        web_fallback_link=web_fallback_link,
        qr_payload=qr_payload,
    )


# ─── Parse ──────────────────────────────────────────────────────

def extract_id(url: object) -> str | None:
    """Id from any placement pattern, tried in fixed order. No classification."""
    if not isinstance(url, str):
        return None
    for pattern in _ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return unquote(match.group(1))
    return None


def is_actionable_domain(url: object, config: LinkConfig = DEFAULT_LINK_CONFIG) -> bool:
    """True when the URL targets one of our schemes or our web domain."""
    parts = _split(url)
    if parts is None:
        return False
    if parts.scheme.lower() in config.schemes:
        return True
    return (parts.hostname or "").lower() in config.web_hosts


def parse(url: object, config: LinkConfig = DEFAULT_LINK_CONFIG) -> LinkIntent | None:
    """Classify a transport URL. Total: never raises."""
    if not isinstance(url, str) or not url.strip():
        return None
    url = url.strip()
    if any(marker in url for marker in config.ignored_markers):
        return None
    parts = _split(url)
    if parts is None:
        return None

    scheme = parts.scheme.lower()
    if scheme in config.schemes:
        return _parse_app_link(parts)
    if scheme in ("http", "https") and (parts.hostname or "").lower() in config.web_hosts:
        return _parse_universal_link(parts)
    return None


def _split(url: object) -> SplitResult | None:
    if not isinstance(url, str):
        return None
    try:
        return urlsplit(url.strip())
    except ValueError:
        return None


def _query_value(query: str, name: str) -> str | None:
    """Raw (still percent-encoded) value of one query parameter."""
    for pair in query.split("&"):
        key, sep, value = pair.partition("=")
        if sep and key == name:
            return value
    return None


def _make_intent(
    kind: IntentKind, automation_id: str, query: str,
) -> LinkIntent:
    if kind == IntentKind.AUTOMATION:
        action = unquote(_query_value(query, "action") or "") or DEFAULT_ACTION
        return LinkIntent(kind=kind, automation_id=automation_id, action=action)
    payload = None
    if kind == IntentKind.EMERGENCY:
        payload = decode_payload(_query_value(query, "data"))
    return LinkIntent(kind=kind, automation_id=automation_id, embedded_payload=payload)


def _parse_app_link(parts: SplitResult) -> LinkIntent | None:
    """<scheme>://<kind>/<id>[?action=...|?data=...]"""
    segments = [parts.netloc, *parts.path.split("/")]
    segments = [s for s in segments if s]
    if len(segments) < 2:
        return None
    kind = _APP_LINK_KINDS.get(segments[0].lower())
    if kind is None:
        return None
    return _make_intent(kind, unquote(segments[1]), parts.query)


def _parse_universal_link(parts: SplitResult) -> LinkIntent | None:
    """<web_domain>/{link,run,emergency,share}/<id> or .../automation/<id>."""
    path = parts.path
    kind = next(
        (k for pattern, k in _KIND_RULES if pattern.search(path)),
        IntentKind.AUTOMATION,
    )
    automation_id = extract_id(path)
    if automation_id is None and kind == IntentKind.SHARE:
        match = _SHARE_ID_PATTERN.search(path)
        automation_id = unquote(match.group(1)) if match else None
    if not automation_id:
        return None
    return _make_intent(kind, automation_id, parts.query)
