from __future__ import annotations

import datetime
import re
from email.utils import parsedate_to_datetime
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Literal, Optional

from dateutil import parser as dateutil_parser
from lxml import etree

from .config import FeedConfig
from .exceptions import ShapeError, UsageError
from .fetch import Fetcher
from .node import NestedValue, Node

if TYPE_CHECKING:
    from lxml.etree import _Element

Dialect = Literal["rss", "atom"]

ATOM_NS = "http://www.w3.org/2005/Atom"

_UTC = datetime.timezone.utc

_RE_XML_DECL_ENCODING = re.compile(
    r'(<\?xml[^>]*encoding=["\'])([^"\']+)(["\'][^>]*\?>)', re.IGNORECASE
)
_RE_WHITESPACE = re.compile(r"\s+")
_RE_ISO_TZ_NO_COLON = re.compile(r"([+-]\d{2})(\d{2})$")
_RE_ISO_TZ_HOUR_ONLY = re.compile(r"([+-]\d{2})$")
_RE_ISO_FRACTION = re.compile(r"\.(\d{7,})(?=(?:[+-]\d{2}:?\d{2}|Z|$))", re.IGNORECASE)
_RE_RFC822 = re.compile(
    r"(?:\w{3},\s+)?(\d{1,2})\s+(\w{3})\s+(\d{4})\s+(\d{2}):(\d{2}):(\d{2})\s+([+-]\d{4}|[A-Z]{2,5})"
)
_MONTHS_RFC822: dict[str, int] = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

_custom_tzinfos: dict[str, int] = {
    "UTC": 0,
    "UT": 0,
    "GMT": 0,
    "Z": 0,
    "WET": 0,
    "WEST": 3600,
    "BST": 3600,
    "CET": 3600,
    "CEST": 7200,
    "EET": 7200,
    "EEST": 10800,
    "MSK": 10800,
    "IST": 19800,
    "PST": -28800,
    "PDT": -25200,
    "MST": -25200,
    "MDT": -21600,
    "CST": -21600,
    "CDT": -18000,
    "EST": -18000,
    "EDT": -14400,
    "AKST": -32400,
    "AKDT": -28800,
    "HST": -36000,
    "AEST": 36000,
    "AEDT": 39600,
    "ACST": 34200,
    "AWST": 28800,
    "NZST": 43200,
    "NZDT": 46800,
    "JST": 32400,
    "KST": 32400,
    "SGT": 28800,
}


def _ensure_utf8_xml_declaration(content: str) -> str:
    """Ensure the XML declaration's encoding matches the UTF-8 bytes we emit."""
    if not content.lstrip().startswith("<?xml"):
        return content
    return _RE_XML_DECL_ENCODING.sub(r"\1utf-8\3", content, count=1)


def _prepare_xml_bytes(xml_content: str | bytes) -> bytes:
    if isinstance(xml_content, str):
        xml_content = _ensure_utf8_xml_declaration(xml_content).encode(
            "utf-8", errors="replace"
        )

    cleaned = xml_content.lstrip()
    if cleaned.startswith(b"\xef\xbb\xbf"):
        cleaned = cleaned[3:].lstrip()
    if not cleaned:
        raise ShapeError("Invalid channel: empty content")

    # U+2028 / U+2029 are invalid in XML 1.0 and make lxml give up
    if b"\xe2\x80\xa8" in cleaned or b"\xe2\x80\xa9" in cleaned:
        cleaned = cleaned.replace(b"\xe2\x80\xa8", b"\n").replace(
            b"\xe2\x80\xa9", b"\n"
        )
    return cleaned


def _make_parser(recover: bool) -> etree.XMLParser:
    return etree.XMLParser(
        ns_clean=True,
        recover=recover,
        collect_ids=False,
        resolve_entities=False,
        no_network=True,
    )


_RECOVER_XML_PARSER = _make_parser(recover=True)
_STRICT_XML_PARSER = _make_parser(recover=False)


def _parse_xml_root(xml_content: bytes, *, recover: bool = True) -> _Element:
    parser = _RECOVER_XML_PARSER if recover else _STRICT_XML_PARSER
    try:
        root = etree.fromstring(xml_content, parser=parser)
    except etree.XMLSyntaxError as e:
        raise ShapeError(f"Invalid channel: {e}") from e
    if root is None:
        raise ShapeError("Invalid channel: content could not be parsed as XML")
    return root


# Dates


def _normalize_iso_datetime_string(value: str) -> str:
    """Coerce flexible ISO-8601 inputs into a form datetime.fromisoformat can parse."""
    cleaned = value.strip()
    if cleaned[-1] in ("Z", "z"):
        return cleaned[:-1] + "+00:00"

    if len(cleaned) > 6 and cleaned[-6] in ("+", "-") and cleaned[-3] == ":":
        return _RE_ISO_FRACTION.sub(lambda m: "." + m.group(1)[:6], cleaned, count=1)

    upper_cleaned = cleaned.upper()
    for suffix in (" UTC", " GMT", " Z"):
        if upper_cleaned.endswith(suffix):
            cleaned = cleaned[: -len(suffix)].rstrip() + "+00:00"
            break

    if (
        " " in cleaned
        and "T" not in cleaned[:11]
        and len(cleaned) >= 10
        and cleaned[4] == "-"
    ):
        date_part, rest = cleaned.split(" ", 1)
        if rest and rest[0].isdigit():
            cleaned = f"{date_part}T{rest}"

    # Only touch offsets that follow a time, never the date's own "-DD"
    if "T" in cleaned:
        match = _RE_ISO_TZ_NO_COLON.search(cleaned)
        if match:
            cleaned = cleaned[:-5] + f"{match.group(1)}:{match.group(2)}"
        else:
            match = _RE_ISO_TZ_HOUR_ONLY.search(cleaned)
            if match:
                cleaned = cleaned[:-3] + f"{match.group(1)}:00"

    return _RE_ISO_FRACTION.sub(lambda m: "." + m.group(1)[:6], cleaned, count=1)


def _ensure_utc(dt: datetime.datetime) -> Optional[datetime.datetime]:
    """Return a timezone-aware datetime normalized to UTC."""
    try:
        return dt.replace(tzinfo=_UTC) if dt.tzinfo is None else dt.astimezone(_UTC)
    except (ValueError, OverflowError):
        return None


def _fast_rfc822(value: str) -> Optional[datetime.datetime]:
    m = _RE_RFC822.match(value)
    if not m:
        return None
    day, mon_str, year, hour, minute, second, tz = m.groups()
    month = _MONTHS_RFC822.get(mon_str.lower())
    if month is None:
        return None
    if tz[0] in "+-":
        offset = (int(tz[1:3]) * 3600 + int(tz[3:5]) * 60) * (1 if tz[0] == "+" else -1)
    else:
        offset = _custom_tzinfos.get(tz)
        if offset is None:
            return None
    if not (-86400 < offset < 86400):
        return None
    try:
        dt = datetime.datetime(
            int(year),
            month,
            int(day),
            int(hour),
            int(minute),
            int(second),
            tzinfo=datetime.timezone(datetime.timedelta(seconds=offset)),
        )
    except ValueError:
        return None
    return dt.astimezone(_UTC)


def _parsedate_to_utc(value: str) -> Optional[datetime.datetime]:
    """RFC-822 / RFC-2822 parsing via email.utils (fallback)."""
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    return _ensure_utc(parsed)


@lru_cache(maxsize=512)
def _slow_dateutil_parse(value: str) -> Optional[datetime.datetime]:
    try:
        return dateutil_parser.parse(value, tzinfos=_custom_tzinfos, ignoretz=False)
    except (ValueError, TypeError, OverflowError):
        return None


@lru_cache(maxsize=8192)
def parse_timestamp(date_str: Optional[str]) -> Optional[int]:
    """Parse an RFC 822 or ISO 8601 date into Unix time.

    Args:
        date_str: Date string as found in ``pubDate``, ``dc:date`` or ``updated``

    Returns:
        Seconds since the epoch, or None when the value cannot be parsed
    """
    if not date_str:
        return None
    candidate = _RE_WHITESPACE.sub(" ", date_str.strip())
    if not candidate:
        return None

    dt: Optional[datetime.datetime] = None
    if len(candidate) >= 10 and candidate[4] == "-" and candidate[0:4].isdigit():
        try:
            dt = datetime.datetime.fromisoformat(
                _normalize_iso_datetime_string(candidate)
            )
        except ValueError:
            dt = None

    if dt is None:
        dt = _fast_rfc822(candidate)
    if dt is None:
        dt = _parsedate_to_utc(candidate)
    if dt is None:
        dt = _slow_dateutil_parse(candidate)
    if dt is None:
        return None

    utc_dt = _ensure_utc(dt)
    if utc_dt is None:
        return None
    return int(utc_dt.timestamp())


# Normalization


def adjust_namespaces(node: Node) -> None:
    """Expose namespaced children of ``node`` as plain ``prefix:localname`` tags.

    When several children map to the same synthetic name the last one wins.
    """
    pending: list[tuple[str, tuple[Node, ...]]] = []
    for prefix, uri in node.nsmap.items():
        if prefix is None:
            continue
        pending.append((prefix, node.children(uri)))

    for prefix, children in pending:
        for child in children:
            node._set_child(
                Node(
                    f"{prefix}:{child.tag}",
                    None,
                    child.text,
                    child.attrib,
                    child.nsmap,
                    list(child._children),
                )
            )


def _set_timestamp(item: Node, value: Optional[str]) -> None:
    timestamp = parse_timestamp(value)
    if timestamp is not None:
        item._set_child(Node("timestamp", None, str(timestamp), nsmap=item.nsmap))


def derive_timestamp(item: Node, dialect: Dialect) -> None:
    """Add a ``timestamp`` tag with the Unix time of the item's date field."""
    if dialect == "rss":
        value = item.findtext("dc:date")
        if value is None:
            value = item.findtext("pubDate")
    else:
        value = item.findtext("updated")
    _set_timestamp(item, value)


def _normalize_rss(channel: Node) -> None:
    adjust_namespaces(channel)
    for item in channel.findall("item"):
        adjust_namespaces(item)
        derive_timestamp(item, "rss")


def _normalize_atom(root: Node) -> None:
    for entry in root.findall("entry"):
        derive_timestamp(entry, "atom")


# Facade


class Feed:
    """Read-only view over a normalized RSS channel or Atom feed.

    Unknown field names read as None. Assigning or deleting any attribute
    raises UsageError.
    """

    __slots__ = ("_root", "_dialect")

    def __init__(self, root: Node, dialect: Dialect):
        object.__setattr__(self, "_root", root)
        object.__setattr__(self, "_dialect", dialect)

    @property
    def root(self) -> Node:
        return self._root

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def entries(self) -> list[Node]:
        """RSS items or Atom entries in document order."""
        return self._root.findall("item" if self._dialect == "rss" else "entry")

    def get(self, name: str) -> Optional[Node]:
        return self._root.find(name)

    def getall(self, name: str) -> list[Node]:
        return self._root.findall(name)

    def findtext(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self._root.findtext(name, default)

    def to_dict(self, node: Optional[Node] = None) -> NestedValue:
        return (self._root if node is None else node).to_dict()

    def __getattr__(self, name: str) -> Optional[Node]:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._root.find(name)

    def __setattr__(self, name: str, value: Any) -> None:
        raise UsageError(f"Cannot assign to a read-only property '{name}'.")

    def __delattr__(self, name: str) -> None:
        raise UsageError(f"Cannot delete a read-only property '{name}'.")

    def __repr__(self) -> str:
        return f"<Feed {self._dialect} {self.findtext('title', '')!r}>"


def parse_rss(content: str | bytes, *, recover: bool = True) -> Feed:
    """Parse already fetched RSS content.

    Recoverable XML errors are ignored unless ``recover`` is false.

    Raises:
        ShapeError: If the document has no ``channel`` element
    """
    element = _parse_xml_root(_prepare_xml_bytes(content), recover=recover)
    root = Node.from_element(element)
    channel = root.find("channel")
    if channel is None:
        raise ShapeError("Invalid channel.")
    _normalize_rss(channel)
    return Feed(channel, "rss")


def parse_atom(content: str | bytes, *, recover: bool = True) -> Feed:
    """Parse already fetched Atom content.

    Raises:
        ShapeError: If the root element does not declare the Atom namespace
    """
    element = _parse_xml_root(_prepare_xml_bytes(content), recover=recover)
    if ATOM_NS not in element.nsmap.values():
        raise ShapeError("Invalid channel.")
    root = Node.from_element(element)
    _normalize_atom(root)
    return Feed(root, "atom")


def _resolve_fetcher(
    config: Optional[FeedConfig], fetcher: Optional[Fetcher]
) -> Fetcher:
    if fetcher is not None:
        return fetcher
    return Fetcher(config)


def load_rss(
    url: str,
    user: Optional[str] = None,
    password: Optional[str] = None,
    *,
    config: Optional[FeedConfig] = None,
    fetcher: Optional[Fetcher] = None,
) -> Feed:
    """Fetch and parse an RSS channel.

    Args:
        url: Feed URL
        user: Optional basic-auth user name
        password: Optional basic-auth password
        config: Cache and transport settings, caching disabled by default
        fetcher: Preconfigured fetcher, takes precedence over ``config``

    Raises:
        FetchError: If the feed can be loaded neither live nor from the cache
        ShapeError: If the document has no ``channel`` element
    """
    content = _resolve_fetcher(config, fetcher).fetch(url, user, password)
    return parse_rss(content)


def load_atom(
    url: str,
    user: Optional[str] = None,
    password: Optional[str] = None,
    *,
    config: Optional[FeedConfig] = None,
    fetcher: Optional[Fetcher] = None,
) -> Feed:
    """Fetch and parse an Atom feed. See :func:`load_rss` for the arguments."""
    content = _resolve_fetcher(config, fetcher).fetch(url, user, password)
    return parse_atom(content)
