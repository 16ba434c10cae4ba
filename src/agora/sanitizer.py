"""HTML sanitizing with named allow-list profiles.

`default` is used for short texts (messages, topics); `full` adds headings,
tables and images for post bodies. Tags outside the profile are unwrapped
(their text survives), dangerous containers are removed together with their
content, and attributes are reduced to the per-tag allow-list.
"""

from __future__ import annotations

import html
import re

from bs4 import BeautifulSoup

_REMOVE_WITH_CONTENT = ["script", "style", "iframe", "object", "embed", "form", "noscript", "template"]

_DEFAULT_TAGS = {
    "a": {"href", "title"},
    "b": set(),
    "blockquote": set(),
    "br": set(),
    "code": set(),
    "em": set(),
    "hr": set(),
    "i": set(),
    "li": set(),
    "ol": set(),
    "p": set(),
    "pre": set(),
    "s": set(),
    "span": set(),
    "strong": set(),
    "u": set(),
    "ul": set(),
}

_FULL_TAGS = {
    **_DEFAULT_TAGS,
    "h1": set(),
    "h2": set(),
    "h3": set(),
    "h4": set(),
    "h5": set(),
    "h6": set(),
    "img": {"src", "alt", "title", "width", "height"},
    "table": set(),
    "thead": set(),
    "tbody": set(),
    "tr": set(),
    "th": {"colspan", "rowspan"},
    "td": {"colspan", "rowspan"},
    "sub": set(),
    "sup": set(),
    "div": set(),
}

PROFILES: dict[str, dict[str, set[str]]] = {
    "default": _DEFAULT_TAGS,
    "full": _FULL_TAGS,
}

_SAFE_URL = re.compile(r"^(https?:|mailto:|/|#|[^:]*$)", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")


def purify(value: str, profile: str = "default") -> str:
    """Return `value` reduced to the tags and attributes of `profile`."""
    allowed = PROFILES.get(profile)
    if allowed is None:
        msg = f"Unknown sanitizer profile: {profile}"
        raise ValueError(msg)

    soup = BeautifulSoup(value or "", "html.parser")
    for tag in soup.find_all(_REMOVE_WITH_CONTENT):
        tag.decompose()

    for tag in soup.find_all(True):
        if tag.name not in allowed:
            tag.unwrap()
            continue
        keep = allowed[tag.name]
        for attr in list(tag.attrs):
            if attr not in keep:
                del tag.attrs[attr]
            elif attr in ("href", "src") and not _SAFE_URL.match(str(tag.attrs[attr]).strip()):
                del tag.attrs[attr]

    return str(soup).strip()


def encode(value: str) -> str:
    """Escape text so it renders literally inside HTML."""
    return html.escape(value or "", quote=True)


def strip_tags(value: str) -> str:
    """Replace every tag with a space and decode entities."""
    return html.unescape(_TAG.sub(" ", value or ""))
