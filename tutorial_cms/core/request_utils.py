"""Request utility functions for handling common request operations."""

import ipaddress
import logging

from fastapi import Request

logger = logging.getLogger(__name__)


def _is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request) -> str:
    """Get the client IP address used for rate limits and login lockouts.

    Proxy headers only reach this point when TRUST_PROXY_IP_HEADERS is set;
    otherwise ProxyHeaderStripMiddleware has already removed them. Priority:
    1. First valid hop of X-Forwarded-For
    2. X-Real-IP
    3. Direct client connection

    Returns:
        Client IP address, or "unknown" when the peer is not available
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
        if _is_valid_ip(ip):
            return ip
        logger.warning(f"Invalid IP in X-Forwarded-For header: {ip}")

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        ip = real_ip.strip()
        if _is_valid_ip(ip):
            return ip
        logger.warning(f"Invalid X-Real-IP: {real_ip}")

    if request.client and request.client.host:
        return request.client.host

    return "unknown"
