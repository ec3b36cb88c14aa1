"""
User agent classification - device type, operating system and browser.

Key behaviors:
- Rules are ordered (markers, label) pairs evaluated first-match-wins
- Tablet markers are checked before the generic Mobile marker
- Edge is checked before Chrome (Edge UAs also carry the Chrome token)
- Safari is checked after Chrome (Chrome UAs also carry the Safari token)
- Never raises; unmatched fields are left as None
"""

from __future__ import annotations

from dataclasses import dataclass

from .models import DeviceType

# --- Rule Tables ---

# Reordering any of these tables changes classification outcomes.
Rule = tuple[tuple[str, ...], str]

DEVICE_RULES: tuple[Rule, ...] = (
    (("Tablet", "iPad"), "tablet"),
    (("Mobile",), "mobile"),
)

OS_RULES: tuple[Rule, ...] = (
    (("Windows NT 10.0",), "Windows 10"),
    (("Windows NT 6.3",), "Windows 8.1"),
    (("Windows NT 6.1",), "Windows 7"),
    (("Mac OS X",), "Mac OS X"),
    (("Linux",), "Linux"),
    (("Android",), "Android"),
    (("iOS",), "iOS"),
)

BROWSER_RULES: tuple[Rule, ...] = (
    (("Edg",), "Edge"),
    (("Chrome",), "Chrome"),
    (("Firefox",), "Firefox"),
    (("Safari",), "Safari"),
    (("Trident", "MSIE"), "Internet Explorer"),
)


@dataclass(frozen=True)
class ClassifierConfig:
    """Classifier rule tables."""

    device_rules: tuple[Rule, ...] = DEVICE_RULES
    os_rules: tuple[Rule, ...] = OS_RULES
    browser_rules: tuple[Rule, ...] = BROWSER_RULES
    default_device: DeviceType = "desktop"


DEFAULT_CONFIG = ClassifierConfig()


@dataclass(frozen=True)
class UAClassification:
    """Result of classifying a user agent."""

    device_type: DeviceType = "unknown"
    operating_system: str | None = None
    browser: str | None = None


# --- Matching ---


def first_match(user_agent: str, rules: tuple[Rule, ...]) -> str | None:
    """Return the label of the first rule with a marker in the UA."""
    for markers, label in rules:
        if any(marker in user_agent for marker in markers):
            return label
    return None


def classify_device(user_agent: str, config: ClassifierConfig = DEFAULT_CONFIG) -> DeviceType:
    label = first_match(user_agent, config.device_rules)
    if label is None:
        return config.default_device
    return label  # type: ignore[return-value]


def classify_operating_system(
    user_agent: str,
    config: ClassifierConfig = DEFAULT_CONFIG,
) -> str | None:
    return first_match(user_agent, config.os_rules)


def classify_browser(user_agent: str, config: ClassifierConfig = DEFAULT_CONFIG) -> str | None:
    return first_match(user_agent, config.browser_rules)


def classify_user_agent(
    user_agent: str | None,
    config: ClassifierConfig = DEFAULT_CONFIG,
) -> UAClassification:
    """
    Classify a raw User-Agent header.

    An absent or empty UA yields device_type "unknown" and no OS/browser.
    """
    if not user_agent:
        return UAClassification()

    return UAClassification(
        device_type=classify_device(user_agent, config),
        operating_system=classify_operating_system(user_agent, config),
        browser=classify_browser(user_agent, config),
    )
