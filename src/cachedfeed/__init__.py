from .config import FeedConfig
from .exceptions import FeedError, FetchError, ShapeError, TransportError, UsageError
from .fetch import CacheStore, Fetcher, TransportResponse, UrllibTransport
from .main import (
    ATOM_NS,
    Feed,
    adjust_namespaces,
    derive_timestamp,
    load_atom,
    load_rss,
    parse_atom,
    parse_rss,
    parse_timestamp,
)
from .node import Node

__all__ = [
    "ATOM_NS",
    "CacheStore",
    "Feed",
    "FeedConfig",
    "FeedError",
    "FetchError",
    "Fetcher",
    "Node",
    "ShapeError",
    "TransportError",
    "TransportResponse",
    "UrllibTransport",
    "UsageError",
    "adjust_namespaces",
    "derive_timestamp",
    "load_atom",
    "load_rss",
    "parse_atom",
    "parse_rss",
    "parse_timestamp",
]
