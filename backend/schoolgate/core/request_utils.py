"""Request helpers: client address and user agent resolution."""

import ipaddress
import logging

from fastapi import Request

from schoolgate.core.config import settings

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


def _is_valid_ip(ip_str: str) -> bool:
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request, trusted_proxies: frozenset[str] | None = None) -> str:
    """Get the client IP address from a request.

    X-Real-IP is only honoured when the direct peer is a trusted proxy
    (TRUSTED_PROXY_IPS, plus loopback); the proxy overwrites it with the
    address it accepted the connection from. Otherwise the direct client
    connection is used.

    X-Forwarded-For is NOT trusted: its leading entries are whatever the
    client sent, so it would let a client pick its own rate-limit key.
    """
    if trusted_proxies is None:
        trusted_proxies = settings.trusted_proxy_ip_set

    peer = request.client.host if request.client else None
    if peer is None:
        return UNKNOWN_CLIENT

    if peer in trusted_proxies or peer in ("127.0.0.1", "::1"):
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            ip = real_ip.strip()
            if _is_valid_ip(ip):
                return ip
            logger.warning(f"Invalid X-Real-IP from trusted proxy {peer}: {real_ip!r}")

    return peer


def get_user_agent(request: Request) -> str:
    """User-Agent header truncated for storage in audit metadata."""
    return request.headers.get("User-Agent", UNKNOWN_CLIENT)[:255]
