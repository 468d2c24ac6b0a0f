"""
User-agent and referrer classification for recorded clicks.

Plain heuristics over the raw header values. Anything unrecognised becomes
"Other" (or None when the header is missing); classification never fails.
"""

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

BOT_PATTERN = re.compile(
    r"bot|crawl|spider|slurp|archiver|facebookexternalhit|embedly|preview|"
    r"curl|wget|python-requests|python-urllib|httpclient|okhttp|go-http-client|"
    r"headless|phantomjs|lighthouse|pingdom|uptime|monitor",
    re.IGNORECASE,
)

# Order matters: Edge and Opera also advertise Chrome, Chrome advertises Safari
BROWSER_PATTERNS = [
    ("Edge", re.compile(r"Edg(e|A|iOS)?/", re.IGNORECASE)),
    ("Opera", re.compile(r"OPR/|Opera", re.IGNORECASE)),
    ("Samsung Internet", re.compile(r"SamsungBrowser/", re.IGNORECASE)),
    ("Firefox", re.compile(r"Firefox/|FxiOS/", re.IGNORECASE)),
    ("Chrome", re.compile(r"Chrome/|CriOS/", re.IGNORECASE)),
    ("Safari", re.compile(r"Safari/", re.IGNORECASE)),
    ("Internet Explorer", re.compile(r"MSIE |Trident/", re.IGNORECASE)),
]

OS_PATTERNS = [
    ("iOS", re.compile(r"iPhone|iPad|iPod", re.IGNORECASE)),
    ("Android", re.compile(r"Android", re.IGNORECASE)),
    ("Windows", re.compile(r"Windows", re.IGNORECASE)),
    ("ChromeOS", re.compile(r"CrOS", re.IGNORECASE)),
    ("macOS", re.compile(r"Mac OS X|Macintosh", re.IGNORECASE)),
    ("Linux", re.compile(r"Linux|X11", re.IGNORECASE)),
]

TABLET_PATTERN = re.compile(r"iPad|Tablet|Kindle|Silk/|PlayBook", re.IGNORECASE)
MOBILE_PATTERN = re.compile(r"Mobi|iPhone|iPod|Android.*Mobile|Windows Phone", re.IGNORECASE)


@dataclass(frozen=True)
class UserAgentInfo:
    browser: Optional[str]
    os: Optional[str]
    device_type: Optional[str]  # desktop, mobile, tablet, bot
    is_bot: bool


def is_bot(user_agent: Optional[str]) -> bool:
    return bool(user_agent) and BOT_PATTERN.search(user_agent) is not None


def _match_first(patterns, user_agent: str) -> str:
    for name, pattern in patterns:
        if pattern.search(user_agent):
            return name
    return "Other"


def _device_type(user_agent: str) -> str:
    if TABLET_PATTERN.search(user_agent):
        return "tablet"
    # Android without "Mobile" is a tablet
    if re.search(r"Android", user_agent, re.IGNORECASE) and not MOBILE_PATTERN.search(user_agent):
        return "tablet"
    if MOBILE_PATTERN.search(user_agent):
        return "mobile"
    return "desktop"


def parse_user_agent(user_agent: Optional[str]) -> UserAgentInfo:
    if not user_agent:
        return UserAgentInfo(browser=None, os=None, device_type=None, is_bot=False)

    bot = is_bot(user_agent)
    return UserAgentInfo(
        browser=_match_first(BROWSER_PATTERNS, user_agent),
        os=_match_first(OS_PATTERNS, user_agent),
        device_type="bot" if bot else _device_type(user_agent),
        is_bot=bot,
    )


def referrer_domain(referrer: Optional[str]) -> Optional[str]:
    """Host part of the referrer, lower-cased and without a leading www."""
    if not referrer:
        return None
    try:
        host = urlsplit(referrer.strip()).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host
