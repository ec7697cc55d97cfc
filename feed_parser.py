#!/usr/bin/env python3
"""
Lightweight feed parsing.

Channel feeds have a small, well-known shape, so instead of a full XML
parser this module uses a handful of bounded regular-expression scans:
entry splitting, tag-scoped text, attribute lookup and entity decoding.
Everything the tracker and watcher need goes through parse_feed(), so the
scanning can be swapped for a real parser without touching them.

parse_feed() never raises on bad markup: entries it cannot make sense of are
skipped and logged at debug level.
"""

from functools import lru_cache
import re
from typing import Dict, List, Optional, Pattern

from config import get_logger
from errors import MalformedDocument
from models import Item, Source

logger = get_logger("parser")

WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={id}"
THUMBNAIL_URL_TEMPLATE = "https://i.ytimg.com/vi/{id}/hqdefault.jpg"

# Identifier tags in order of preference; Atom <id> values carry a "yt:video:" prefix
ID_TAGS = ("yt:videoId", "id", "guid")
ID_PREFIX = "yt:video:"
PUBLISHED_TAGS = ("published", "pubDate")

_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_ENTITY_RE = re.compile(r"&(?:(amp|lt|gt|quot|apos)|#(\d+)|#[xX]([0-9a-fA-F]+));")
_NAMED_ENTITIES = {"amp": "&", "lt": "<", "gt": ">", "quot": '"', "apos": "'"}
_LINK_TAG_RE = re.compile(r"<link\b([^>]*)>", re.IGNORECASE)
_ATTR_RE = re.compile(r"([\w:.-]+)\s*=\s*([\"'])(.*?)\2", re.DOTALL)
_FEED_SHAPE_RE = re.compile(r"<(?:[\w-]+:)?(?:feed|rss|entry|item)[\s>]", re.IGNORECASE)


def _entity_replacement(match: "re.Match[str]") -> str:
    named, decimal, hexadecimal = match.groups()
    if named:
        return _NAMED_ENTITIES[named]
    code_point = int(decimal) if decimal else int(hexadecimal, 16)
    # NUL, UTF-16 surrogates and values past U+10FFFF cannot be encoded as UTF-8
    if code_point == 0 or 0xD800 <= code_point <= 0xDFFF or code_point > 0x10FFFF:
        return match.group(0)
    return chr(code_point)


def _decode_once(text: str) -> str:
    return _ENTITY_RE.sub(_entity_replacement, text)


def decode_entities(text: Optional[str]) -> str:
    """Decode the markup layer and then the HTML layer of a feed text field.

    Each layer is a single left-to-right substitution, so ``&amp;amp;``
    becomes ``&`` but ``&amp;amp;amp;`` stops at ``&amp;``.
    """
    return _decode_once(_decode_once(text or ""))


@lru_cache(maxsize=64)
def _tag_pattern(tag: str) -> Pattern[str]:
    # re.escape leaves ':' alone, so namespaced tags like yt:videoId match literally
    t = re.escape(tag)
    return re.compile(rf"<{t}(?:\s[^>]*)?>(.*?)</{t}\s*>", re.IGNORECASE | re.DOTALL)


@lru_cache(maxsize=64)
def _attr_pattern(tag: str, attr: str) -> Pattern[str]:
    t, a = re.escape(tag), re.escape(attr)
    return re.compile(rf"<{t}(?=[\s/>])[^>]*?\s{a}\s*=\s*([\"'])(.*?)\1", re.IGNORECASE | re.DOTALL)


def tag_text(fragment: str, tag: str) -> str:
    """Text of the first ``<tag>...</tag>`` in fragment, CDATA stripped and trimmed."""
    match = _tag_pattern(tag).search(fragment)
    if not match:
        return ""
    return _CDATA_RE.sub(r"\1", match.group(1)).strip()


def tag_attr(fragment: str, tag: str, attr: str) -> str:
    """Value of ``attr`` on the first ``<tag>`` carrying it, or ""."""
    match = _attr_pattern(tag, attr).search(fragment)
    return _decode_once(match.group(2)) if match else ""


def _attributes(raw: str) -> Dict[str, str]:
    return {name.lower(): value for name, _, value in _ATTR_RE.findall(raw)}


def link_href(fragment: str) -> str:
    """Pick the entry's canonical link.

    Prefers a ``<link rel="alternate" href=...>`` (attributes in any order),
    then the first ``<link href=...>``, then RSS-style ``<link>url</link>``.
    """
    first_href = ""
    for match in _LINK_TAG_RE.finditer(fragment):
        attrs = _attributes(match.group(1))
        href = attrs.get("href", "")
        if not href:
            continue
        if "alternate" in attrs.get("rel", "").lower().split():
            return _decode_once(href)
        if not first_href:
            first_href = href
    if first_href:
        return _decode_once(first_href)
    return _decode_once(tag_text(fragment, "link"))


def split_entries(document: str) -> List[str]:
    """Split a feed into entry bodies in document order.

    Atom ``<entry>`` blocks are used when present, otherwise RSS ``<item>``.
    """
    if not document:
        return []
    entries = _tag_pattern("entry").findall(document)
    if not entries:
        entries = _tag_pattern("item").findall(document)
    return entries


def looks_like_feed(document: Optional[str]) -> bool:
    """Minimal shape check: some feed, rss, entry or item tag is present."""
    return bool(document) and _FEED_SHAPE_RE.search(document) is not None


def ensure_feed_document(document: Optional[str]) -> str:
    if not looks_like_feed(document):
        preview = (document or "")[:80].replace("\n", " ")
        raise MalformedDocument(f"Payload is not a feed document: {preview!r}")
    return document


def _item_id(entry: str) -> str:
    for tag in ID_TAGS:
        value = decode_entities(tag_text(entry, tag))
        if value:
            return value[len(ID_PREFIX):] if value.startswith(ID_PREFIX) else value
    return ""


def _published(entry: str) -> str:
    for tag in PUBLISHED_TAGS:
        value = tag_text(entry, tag)
        if value:
            return value
    return ""


def parse_entry(entry: str, source: Optional[Source] = None) -> Optional[Item]:
    """Build an Item from one entry body, or None when it has no identifier."""
    item_id = _item_id(entry)
    title = decode_entities(tag_text(entry, "title"))
    if not item_id:
        if title:
            logger.debug(f"Skipping entry without an identifier: {title!r}")
        return None

    return Item(
        item_id=item_id,
        title=title,
        link=link_href(entry) or WATCH_URL_TEMPLATE.format(id=item_id),
        published=_published(entry),
        thumbnail=tag_attr(entry, "media:thumbnail", "url") or THUMBNAIL_URL_TEMPLATE.format(id=item_id),
        source_id=source.id if source else "",
        source_name=source.name if source else "",
    )


def parse_feed(document: Optional[str], source: Optional[Source] = None) -> List[Item]:
    """Extract items from a feed payload, newest first as the feed lists them."""
    items: List[Item] = []
    for entry in split_entries(document or ""):
        item = parse_entry(entry, source)
        if item is not None:
            items.append(item)
    return items
