"""Wi-Fi payload helpers and credential model."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from qrsuite.codec.errors import ValidationError
from qrsuite.constants import SECURITY_ALIASES

_SPECIAL_CHARACTERS = re.compile(r'([\\;,":])')


class WifiSecurity(Enum):
    """Network security and the ``T:`` value it is written as."""

    WPA = "WPA"
    WEP = "WEP"
    OPEN = "nopass"


@dataclass(frozen=True)
class WifiCredential:
    ssid: str
    password: str = ""
    security: WifiSecurity | str = WifiSecurity.WPA
    hidden: bool = False


def _escape(value: str) -> str:
    """Escape payload delimiters for QR-encoded Wi-Fi strings."""
    return _SPECIAL_CHARACTERS.sub(r"\\\1", value)


def normalize_security(value: WifiSecurity | str) -> WifiSecurity:
    """Normalize security labels into canonical forms."""
    if isinstance(value, WifiSecurity):
        return value
    key = value.upper().strip()
    key = SECURITY_ALIASES.get(key, key)
    try:
        return WifiSecurity[key]
    except KeyError as exc:
        raise ValidationError(f"Unknown security type: {value!r}") from exc


def is_open_security(value: WifiSecurity | str) -> bool:
    """Return True when the security represents an open network."""
    return normalize_security(value) is WifiSecurity.OPEN


def validate_credential(credential: WifiCredential) -> WifiSecurity:
    """Check credential invariants and return the normalized security."""
    if not credential.ssid.strip():
        raise ValidationError("Network name (SSID) is required.")
    security = normalize_security(credential.security)
    if security is not WifiSecurity.OPEN and not credential.password:
        raise ValidationError(f"A password is required for {security.name} networks.")
    return security


def build_wifi_payload(credential: WifiCredential) -> str:
    """Build a Wi-Fi QR payload string from a credential."""
    security = validate_credential(credential)
    ssid = _escape(credential.ssid)
    password = "" if security is WifiSecurity.OPEN else _escape(credential.password)
    hidden = "true" if credential.hidden else "false"
    return f"WIFI:T:{security.value};S:{ssid};P:{password};H:{hidden};;"


def _split_fields(body: str) -> list[str]:
    """Split on unescaped ``;`` and drop the escapes."""
    fields = []
    current: list[str] = []
    escaped = False
    for char in body:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ";":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    if escaped:
        current.append("\\")
    if current:
        fields.append("".join(current))
    return fields


def parse_wifi_payload(payload: str) -> WifiCredential:
    """Parse a ``WIFI:`` payload back into a credential.

    Fields may come in any order. A missing ``T:`` means an open network and
    a missing ``H:`` means the network is broadcast.
    """
    if not payload.upper().startswith("WIFI:"):
        raise ValidationError("Not a Wi-Fi payload.")
    values: dict[str, str] = {}
    for field in _split_fields(payload[5:]):
        key, separator, value = field.partition(":")
        if separator and key.upper() in ("T", "S", "P", "H") and key.upper() not in values:
            values[key.upper()] = value

    credential = WifiCredential(
        ssid=values.get("S", ""),
        password=values.get("P", ""),
        security=normalize_security(values.get("T", "nopass")),
        hidden=values.get("H", "false").strip().lower() == "true",
    )
    validate_credential(credential)
    return credential
