"""Best-effort device naming and IP geolocation for session metadata."""
import ipaddress
import logging

import requests

from app.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

LOCAL_NETWORK = "Local Network"


def parse_device_name(user_agent: str | None) -> str:
    """Coarse device label from a user agent string."""
    if not user_agent:
        return "Unknown Device"
    ua = user_agent.lower()

    if "iphone" in ua:
        return "iPhone"
    if "ipad" in ua:
        return "iPad"
    if "android" in ua or "mobile" in ua:
        return "Mobile Device"
    if "mac" in ua:
        return "Mac"
    if "windows" in ua:
        return "Windows PC"
    if "linux" in ua:
        return "Linux PC"
    return "Desktop"


def lookup_location(ip_address: str | None) -> str | None:
    """Resolve "City, Country" for an IP. Never raises."""
    if not ip_address:
        return None

    try:
        parsed = ipaddress.ip_address(ip_address)
    except ValueError:
        return None

    if parsed.is_loopback or parsed.is_private or parsed.is_link_local:
        return LOCAL_NETWORK

    if not settings.geolocation_enabled:
        return None

    try:
        response = requests.get(
            f"{settings.geolocation_url.rstrip('/')}/{parsed}/json/",
            timeout=settings.geolocation_timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.debug(f"Geolocation lookup failed: {e}")
        return None

    if not isinstance(data, dict):
        logger.debug(f"Unexpected geolocation payload: {type(data).__name__}")
        return None

    city = data.get("city")
    country = data.get("country_name")
    if city and country:
        return f"{city}, {country}"
    return country or None
