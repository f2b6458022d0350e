"""
Device fingerprinting and visitor identifiers.

A fingerprint is a SHA-256 over coarse device and network attributes. It is
deliberately imprecise: the IP address is cut to its first three octets, so
visitors behind the same /24 with the same browser, OS and headers hash to
the same value. Collisions merge visitors; that is the privacy trade-off.
"""

import hashlib
import json
import re
import secrets
from collections.abc import Mapping

from .user_agent import parse_user_agent

PRIVATE_IP_PATTERNS = [
    re.compile(r"^10\."),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),
    re.compile(r"^192\.168\."),
    re.compile(r"^127\."),
    re.compile(r"^::1$"),
    re.compile(r"^fc00:", re.IGNORECASE),
    re.compile(r"^fe80:", re.IGNORECASE),
    re.compile(r"^localhost$", re.IGNORECASE),
]

# Checked in order; the first header present wins
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip", "x-client-ip")

FALLBACK_IP = "127.0.0.1"


def truncate_ip(ip_address: str | None) -> str:
    """Keep the first three dot-separated parts of an address."""
    return ".".join((ip_address or "").split(".")[:3])


def generate_device_fingerprint(
    user_agent: str | None,
    ip_address: str | None,
    accept_language: str | None = None,
    accept_encoding: str | None = None,
) -> str:
    """Hash device and partial network attributes into a hex fingerprint.

    Identical inputs always produce identical output. Only the first three
    octets of the IP take part, so the fourth octet never changes the result.
    """
    device = parse_user_agent(user_agent)
    fingerprint_data = {
        "browser": device.browser.lower(),
        "browserVersion": device.browser_version.lower(),
        "os": device.os.lower(),
        "osVersion": device.os_version.lower(),
        "device": device.type,
        "ipAddress": truncate_ip(ip_address),
        "language": accept_language or "unknown",
        "encoding": accept_encoding or "unknown",
    }
    payload = json.dumps(fingerprint_data, separators=(",", ":"))
    return hashlib.sha256(payload.encode()).hexdigest()


def is_private_ip(ip_address: str | None) -> bool:
    """Check for loopback, link-local and RFC 1918 addresses."""
    if not ip_address:
        return True
    return any(pattern.search(ip_address) for pattern in PRIVATE_IP_PATTERNS)


def get_real_ip(headers: Mapping[str, str], peer_host: str | None = None) -> str:
    """Resolve the client address behind proxies.

    Args:
        headers: Request headers (case-insensitive mapping, or lowercase keys)
        peer_host: Socket peer address, used when no proxy header is present
    """
    for header in CLIENT_IP_HEADERS:
        value = headers.get(header)
        if value:
            candidate = value.split(",")[0].strip()
            if candidate:
                return candidate
    return peer_host or FALLBACK_IP


def generate_visitor_id() -> str:
    return secrets.token_hex(16)


def generate_session_id() -> str:
    return secrets.token_hex(20)
