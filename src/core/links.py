"""Reddit link detection and rewriting (core domain).

Everything here is a pure function over module-level compiled patterns, so
calls are independent of each other regardless of order or concurrency.
"""

from __future__ import annotations

import re
from typing import Dict, List

TARGET_HOST = "rxddit.com"

# RFC 3986 unreserved, reserved and percent characters. A link stops at the
# first character outside this set (whitespace, <, >, ", `, {, }, |, \, ^,
# and anything non-ASCII such as emoji). Valid punctuation right after a link
# (".", ",", ")", "!") is kept as part of it.
_URL_CHARS = r"[A-Za-z0-9\-._~:/?#\[\]@!$&'()*+,;=%]"

# Matches reddit.com, www.reddit.com, old.reddit.com and new.reddit.com, but
# only for community paths (/r/...). Profile paths such as /user/ or /u/ are
# not converted.
REDDIT_LINK_PATTERN = re.compile(
    r"https?://(?:(?:www|old|new)\.)?reddit\.com/r/" + _URL_CHARS + r"+",
    re.IGNORECASE,
)

_REDDIT_ORIGIN = re.compile(
    r"^https?://(?:(?:www|old|new)\.)?reddit\.com(?=/)",
    re.IGNORECASE,
)


def _dedup_key(link: str) -> str:
    origin = _REDDIT_ORIGIN.match(link)
    if origin is None:
        return link
    return origin.group(0).lower() + link[origin.end():]


def detect_links(text: str) -> List[str]:
    """Return recognized links in order of first appearance, deduplicated.

    Scheme and host compare case-insensitively; the first spelling seen wins.
    """

    if not text:
        return []
    seen: Dict[str, str] = {}
    for match in REDDIT_LINK_PATTERN.finditer(text):
        link = match.group(0)
        seen.setdefault(_dedup_key(link), link)
    return list(seen.values())


def convert_link(link: str) -> str:
    """Rewrite a single Reddit link to the rxddit host.

    The scheme becomes https and the host is replaced by ``TARGET_HOST``; path,
    query, fragment and trailing slash are kept exactly. Anything that is not a
    recognized Reddit link is returned unchanged.
    """

    if not REDDIT_LINK_PATTERN.fullmatch(link):
        return link
    return _REDDIT_ORIGIN.sub(f"https://{TARGET_HOST}", link, count=1)


def convert_links(text: str) -> str:
    """Replace every recognized link in ``text`` in place.

    Duplicates are replaced at each of their positions; all other characters
    are left untouched.
    """

    if not text:
        return text
    return REDDIT_LINK_PATTERN.sub(lambda match: convert_link(match.group(0)), text)
