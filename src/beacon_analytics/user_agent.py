"""
User-Agent parsing for device classification and browser/OS enrichment.

Device classification is deliberately coarse so that the same rules can be
evaluated in Python (``classify_device``) and inside SQL group-by queries
(``device_case_sql``):

- an explicit device type reported by the client wins
- otherwise "ipad"/"tablet" in the user-agent means tablet
- "mobile"/"android"/"iphone" means mobile
- any other user-agent means desktop
- no user-agent at all means unknown

Browser and OS detection fill in session fields the client did not send.
"""

import re
from dataclasses import dataclass
from enum import Enum


class DeviceType(str, Enum):
    """Device category."""
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"


# Substrings matched case-insensitively; tablet hints are checked first.
TABLET_HINTS = ("ipad", "tablet")
MOBILE_HINTS = ("mobile", "android", "iphone")


@dataclass(frozen=True)
class UserAgentInfo:
    """
    Parsed user-agent information.

    Attributes:
        browser: Browser family name (Chrome, Firefox, Safari, etc.)
        os: Operating system family (Windows, macOS, iOS, Android, Linux)
        device_type: Device category from the substring heuristics
    """
    browser: str = "Unknown"
    os: str = "Unknown"
    device_type: DeviceType = DeviceType.UNKNOWN


# Order matters: Chromium derivatives and WebViews mention Chrome/Safari too.
BROWSER_PATTERNS = [
    (r"Edg(?:e|A|iOS)?/", "Edge"),
    (r"OPR/|Opera", "Opera"),
    (r"SamsungBrowser/", "Samsung Internet"),
    (r"Firefox/|FxiOS/", "Firefox"),
    (r"CriOS/|Chrome/", "Chrome"),
    (r"Chromium/", "Chromium"),
    (r"Safari/", "Safari"),
    (r"MSIE |Trident/", "Internet Explorer"),
]

OS_PATTERNS = [
    (r"iPhone|iPod", "iOS"),
    (r"iPad", "iPadOS"),
    (r"Android", "Android"),
    (r"Macintosh|Mac OS X", "macOS"),
    (r"Windows", "Windows"),
    (r"CrOS", "Chrome OS"),
    (r"Linux", "Linux"),
]


def classify_device(device_type: str | None, user_agent: str | None) -> str:
    """Classify a session's device.

    Args:
        device_type: Device type reported by the client, if any
        user_agent: Raw User-Agent string, if any

    Returns:
        The explicit device type (lower-cased) or one of desktop, mobile,
        tablet, unknown
    """
    if device_type and device_type.strip():
        return device_type.strip().lower()

    if not user_agent:
        return DeviceType.UNKNOWN.value

    ua = user_agent.lower()
    if any(hint in ua for hint in TABLET_HINTS):
        return DeviceType.TABLET.value
    if any(hint in ua for hint in MOBILE_HINTS):
        return DeviceType.MOBILE.value
    return DeviceType.DESKTOP.value


def device_case_sql(device_column: str = "device_type", ua_column: str = "user_agent") -> str:
    """SQL expression implementing ``classify_device`` for a GROUP BY."""
    tablet = " OR ".join(f"lower({ua_column}) LIKE '%{hint}%'" for hint in TABLET_HINTS)
    mobile = " OR ".join(f"lower({ua_column}) LIKE '%{hint}%'" for hint in MOBILE_HINTS)
    return (
        "CASE"
        f" WHEN {device_column} IS NOT NULL AND trim({device_column}) != ''"
        f" THEN lower(trim({device_column}))"
        f" WHEN {ua_column} IS NULL OR {ua_column} = '' THEN '{DeviceType.UNKNOWN.value}'"
        f" WHEN {tablet} THEN '{DeviceType.TABLET.value}'"
        f" WHEN {mobile} THEN '{DeviceType.MOBILE.value}'"
        f" ELSE '{DeviceType.DESKTOP.value}'"
        " END"
    )


def _match(ua: str, patterns: list[tuple[str, str]]) -> str:
    for pattern, name in patterns:
        if re.search(pattern, ua, re.IGNORECASE):
            return name
    return "Unknown"


def parse_user_agent(user_agent: str | None) -> UserAgentInfo:
    """
    Parse a user-agent string into browser, OS and device class.

    Examples:
        >>> parse_user_agent("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 Version/17.0 Mobile/15E148 Safari/604.1")
        UserAgentInfo(browser='Safari', os='iOS', device_type=<DeviceType.MOBILE: 'mobile'>)
    """
    if not user_agent or not user_agent.strip():
        return UserAgentInfo()

    return UserAgentInfo(
        browser=_match(user_agent, BROWSER_PATTERNS),
        os=_match(user_agent, OS_PATTERNS),
        device_type=DeviceType(classify_device(None, user_agent)),
    )
