"""
User-Agent parsing for browser, OS and device detection.

User-Agents are notoriously messy (Chrome claims to be Mozilla, Safari, and
Chrome all at once), so we use ordered pattern matching:

- Check newer/specific browsers first (Edge before Chrome)
- Check tablets before phones (iPads sometimes say "Mobile")
- Never return None: unknown fields become "Unknown" (device type "unknown")
  so aggregation queries always group on a real value

Parsing is pure and never raises, whatever the input.
"""

import re
from dataclasses import asdict, dataclass
from enum import Enum

UNKNOWN = "Unknown"


class DeviceType(str, Enum):
    """Device category."""
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    TV = "tv"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DeviceInfo:
    """
    Parsed device information.

    Attributes:
        type: Device category value (desktop, mobile, tablet, tv, unknown)
        browser: Browser family name (Chrome, Firefox, Safari, ...)
        browser_version: Major version number
        os: Operating system (Windows, macOS, iOS, Android, Linux, ...)
        os_version: OS version
    """
    type: str = DeviceType.UNKNOWN.value
    browser: str = UNKNOWN
    browser_version: str = UNKNOWN
    os: str = UNKNOWN
    os_version: str = UNKNOWN
    is_mobile: bool = False
    is_tablet: bool = False
    is_desktop: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return asdict(self)


# =============================================================================
# BROWSER DETECTION PATTERNS
# =============================================================================
# Order matters! Check specific browsers before generic ones.

BROWSER_PATTERNS = [
    # Chromium derivatives (check before Chrome)
    (r"Edg(?:e|A|iOS)?/(\d+)", "Edge"),
    (r"OPR/(\d+)", "Opera"),
    (r"Opera.*Version/(\d+)", "Opera"),
    (r"Vivaldi/(\d+)", "Vivaldi"),
    (r"Brave/(\d+)", "Brave"),
    (r"SamsungBrowser/(\d+)", "Samsung Internet"),
    (r"UCBrowser/(\d+)", "UC Browser"),
    (r"YaBrowser/(\d+)", "Yandex"),
    (r"DuckDuckGo/(\d+)", "DuckDuckGo"),

    # Firefox variants
    (r"Firefox Focus/(\d+)", "Firefox Focus"),
    (r"Firefox/(\d+)", "Firefox"),
    (r"FxiOS/(\d+)", "Firefox"),

    # Chrome (after other Chromium browsers)
    (r"CriOS/(\d+)", "Chrome"),
    (r"Chrome/(\d+)", "Chrome"),
    (r"Chromium/(\d+)", "Chromium"),

    # Safari (must come after Chrome which also contains Safari)
    (r"Version/(\d+).*Safari", "Safari"),
    (r"Safari/(\d+)", "Safari"),

    # Legacy
    (r"MSIE (\d+)", "Internet Explorer"),
    (r"Trident.*rv:(\d+)", "Internet Explorer"),

    # In-app WebViews
    (r"Instagram", "Instagram WebView"),
    (r"FBAN|FBAV", "Facebook WebView"),
]

# =============================================================================
# OS DETECTION PATTERNS
# =============================================================================
# Each tuple: (pattern, os_name, version_regex, fixed_version)

OS_PATTERNS = [
    (r"iPhone|iPod", "iOS", r"OS (\d+[_\.]\d+)", None),
    (r"iPad", "iPadOS", r"OS (\d+[_\.]\d+)", None),
    (r"Macintosh|Mac OS X", "macOS", r"Mac OS X (\d+[_\.]\d+)", None),

    # Android before Linux since Android contains Linux
    (r"Android", "Android", r"Android (\d+\.?\d*)", None),

    (r"Windows NT 10\.0", "Windows", None, "10"),
    (r"Windows NT 6\.3", "Windows", None, "8.1"),
    (r"Windows NT 6\.2", "Windows", None, "8"),
    (r"Windows NT 6\.1", "Windows", None, "7"),
    (r"Windows", "Windows", None, None),

    (r"CrOS", "Chrome OS", None, None),
    (r"Ubuntu", "Ubuntu", None, None),
    (r"Fedora", "Fedora", None, None),
    (r"Linux", "Linux", None, None),
    (r"FreeBSD", "FreeBSD", None, None),
]

# =============================================================================
# DEVICE TYPE DETECTION
# =============================================================================

TV_INDICATORS = [
    r"SmartTV",
    r"Smart-TV",
    r"Web0S",
    r"NetCast",
    r"Tizen",
    r"Roku",
    r"BRAVIA",
    r"AppleTV",
    r"tvOS",
    r"FireTV",
    r"Chromecast",
]

TABLET_INDICATORS = [
    r"iPad",
    r"Android(?!.*Mobile)",  # Android without Mobile = tablet
    r"Tablet",
    r"Kindle",
    r"Silk",
    r"PlayBook",
]

MOBILE_INDICATORS = [
    r"Mobile",
    r"iPhone",
    r"iPod",
    r"BlackBerry",
    r"IEMobile",
    r"Opera Mini",
    r"Windows Phone",
]

DESKTOP_BROWSERS = ("Chrome", "Firefox", "Safari", "Edg", "Opera", "MSIE", "Trident")


def _detect_device_type(ua: str) -> DeviceType:
    """Detect device type from user-agent string."""
    for pattern in TV_INDICATORS:
        if re.search(pattern, ua, re.IGNORECASE):
            return DeviceType.TV

    for pattern in TABLET_INDICATORS:
        if re.search(pattern, ua, re.IGNORECASE):
            return DeviceType.TABLET

    for pattern in MOBILE_INDICATORS:
        if re.search(pattern, ua, re.IGNORECASE):
            return DeviceType.MOBILE

    if any(browser in ua for browser in DESKTOP_BROWSERS):
        return DeviceType.DESKTOP

    return DeviceType.UNKNOWN


def _detect_browser(ua: str) -> tuple[str, str]:
    """Return (browser_name, major_version)."""
    for pattern, browser_name in BROWSER_PATTERNS:
        match = re.search(pattern, ua, re.IGNORECASE)
        if match:
            version = match.group(1) if match.lastindex else UNKNOWN
            return (browser_name, version)

    return (UNKNOWN, UNKNOWN)


def _detect_os(ua: str) -> tuple[str, str]:
    """Return (os_name, version)."""
    for os_pattern, os_name, version_pattern, fixed_version in OS_PATTERNS:
        if not re.search(os_pattern, ua, re.IGNORECASE):
            continue
        if fixed_version:
            return (os_name, fixed_version)
        if version_pattern:
            version_match = re.search(version_pattern, ua)
            if version_match:
                return (os_name, version_match.group(1).replace("_", "."))
        return (os_name, UNKNOWN)

    return (UNKNOWN, UNKNOWN)


def parse_user_agent(user_agent: str | None) -> DeviceInfo:
    """
    Parse a user-agent string into a DeviceInfo record.

    Examples:
        >>> info = parse_user_agent("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36")
        >>> (info.type, info.browser, info.os, info.is_mobile)
        ('desktop', 'Chrome', 'Windows', False)
    """
    if not isinstance(user_agent, str) or not user_agent.strip():
        return DeviceInfo()

    browser, browser_version = _detect_browser(user_agent)
    os_name, os_version = _detect_os(user_agent)
    device_type = _detect_device_type(user_agent)

    return DeviceInfo(
        type=device_type.value,
        browser=browser,
        browser_version=browser_version,
        os=os_name,
        os_version=os_version,
        is_mobile=device_type == DeviceType.MOBILE,
        is_tablet=device_type == DeviceType.TABLET,
        is_desktop=device_type == DeviceType.DESKTOP,
    )
