"""Locator helpers for rewriting test intent JSON."""

import json
import re
from typing import Any

import structlog

logger = structlog.get_logger().bind(component="locators")

KNOWN_PREFIXES = frozenset(
    {"css", "xpath", "testid", "role", "text", "id", "name", "class", "label", "placeholder"}
)

# Fragments that show up when a model returns Playwright code instead of a selector.
CODE_INDICATORS = (
    "page.",
    "AriaRole",
    "new Page.",
    "Page.Get",
    ".setName(",
    "locator(",
    "getBy",
    ".click(",
    "Options()",
)

_TAG_WITH_ATTRIBUTE = re.compile(r"^[a-zA-Z][a-zA-Z0-9-]*\[.+\]$")

DEFAULT_PAGE_URL = "https://www.saucedemo.com"


def strip_locator_prefix(locator: str | None) -> str:
    """Drop a strategy prefix such as ``css=`` or ``testid=``."""
    if not locator:
        return ""
    eq = locator.find("=")
    if 0 < eq < 12 and locator[:eq].lower() in KNOWN_PREFIXES:
        return locator[eq + 1 :]
    return locator


def locators_match(stored: str | None, extracted: str | None) -> bool:
    if stored is None or extracted is None:
        return False
    if stored == extracted:
        return True
    return strip_locator_prefix(stored) == strip_locator_prefix(extracted)


def is_valid_selector(locator: str | None) -> bool:
    """True for a plain CSS/XPath selector string, False for code or blanks."""
    if not locator or not locator.strip():
        return False
    for indicator in CODE_INDICATORS:
        if indicator in locator:
            logger.warning("locator_contains_code", locator=locator, indicator=indicator)
            return False
    return (
        locator.startswith(("[", "#", ".", "//"))
        or _TAG_WITH_ATTRIBUTE.match(locator) is not None
    )


def _replace_in_steps(steps: list[dict[str, Any]] | None, broken: str, new: str) -> bool:
    replaced = False
    for step in steps or []:
        locator = step.get("locator")
        if locator is not None and locators_match(locator, broken):
            step["locator"] = new
            replaced = True
    return replaced


def build_fixed_test_code(original: str, broken_locator: str | None, new_locator: str) -> str:
    """
    Replace ``broken_locator`` with ``new_locator`` in test intent JSON.

    Scenario steps are searched first, then top-level legacy steps. The
    original content is returned unchanged when the new locator is not a
    valid selector, the broken locator is unknown, nothing matched, or the
    content is not JSON.
    """
    if not is_valid_selector(new_locator):
        logger.warning("invalid_replacement_locator", locator=new_locator)
        return original
    if not broken_locator or not broken_locator.strip() or broken_locator == "UNKNOWN":
        logger.warning("broken_locator_unknown")
        return original

    try:
        content = json.loads(original)
    except (TypeError, ValueError) as e:
        logger.warning("test_content_not_json", error=str(e))
        return original
    if not isinstance(content, dict):
        return original

    replaced = False
    for scenario in content.get("scenarios") or []:
        replaced = _replace_in_steps(scenario.get("steps"), broken_locator, new_locator) or replaced
    if not replaced:
        replaced = _replace_in_steps(content.get("steps"), broken_locator, new_locator)

    if not replaced:
        logger.warning("broken_locator_not_found", broken_locator=broken_locator)
        return original
    return json.dumps(content)


def _navigate_url(step: dict[str, Any]) -> str | None:
    if str(step.get("action", "")).upper() != "NAVIGATE":
        return None
    url = step.get("value")
    return url if isinstance(url, str) and url.strip() else None


def infer_page_url(
    content: str,
    goal_url: str | None = None,
    failed_step_index: int | None = None,
    default: str = DEFAULT_PAGE_URL,
) -> str:
    """
    Work out which page a failing test was on.

    Preference order: explicit goal URL, the nearest NAVIGATE step at or
    before the failed step, the first NAVIGATE step, ``baseUrl``, a legacy
    top-level NAVIGATE step, then ``default``.
    """
    if goal_url and goal_url.strip():
        return goal_url

    try:
        data = json.loads(content)
    except (TypeError, ValueError) as e:
        logger.warning("page_url_not_inferred", error=str(e))
        return default
    if not isinstance(data, dict):
        return default

    scenarios = data.get("scenarios") or []
    steps = (scenarios[0].get("steps") or []) if scenarios else []
    if steps:
        if failed_step_index is not None and failed_step_index > 0:
            for i in range(min(failed_step_index, len(steps) - 1), -1, -1):
                url = _navigate_url(steps[i])
                if url:
                    return url
        for step in steps:
            url = _navigate_url(step)
            if url:
                return url

    base_url = data.get("baseUrl")
    if isinstance(base_url, str) and base_url.strip():
        return base_url

    for step in data.get("steps") or []:
        url = _navigate_url(step)
        if url:
            return url

    return default


def sanitize_name(name: str) -> str:
    """Make a test name safe for use in a branch name."""
    return re.sub(r"[^a-zA-Z0-9]", "-", name)
