import os
import time

import pytest

from cachedfeed import (
    FeedConfig,
    Fetcher,
    FetchError,
    ShapeError,
    TransportError,
    UsageError,
    load_atom,
    load_rss,
)

from conftest import FakeTransport

URL = "https://example.com/feed.xml"

RSS = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0" xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Example</title>
    <link>https://example.com/</link>
    <item>
      <title>A</title>
      <pubDate>Wed, 01 Jan 2020 00:00:00 GMT</pubDate>
      <category>one</category>
      <category>two</category>
      <dc:creator>Jane</dc:creator>
    </item>
  </channel>
</rss>
"""

ATOM = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <entry>
    <title>First</title>
    <updated>2020-01-01T00:00:00Z</updated>
  </entry>
  <entry>
    <title>Second</title>
    <updated>2020-01-02T00:00:00Z</updated>
  </entry>
</feed>
"""


def _fetcher(*responses, **config):
    return Fetcher(FeedConfig(**config), FakeTransport(*responses))


def test_load_rss_single_item():
    feed = load_rss(URL, fetcher=_fetcher(RSS))
    assert feed.dialect == "rss"
    assert feed.root.tag == "channel"
    assert len(feed.entries) == 1
    item = feed.entries[0]
    assert item.findtext("title") == "A"
    assert item.timestamp == 1577836800
    assert item.findtext("dc:creator") == "Jane"


def test_load_atom_entries():
    feed = load_atom(URL, fetcher=_fetcher(ATOM))
    assert feed.dialect == "atom"
    assert str(feed.title) == "Atom Example"
    assert [e.timestamp for e in feed.entries] == [1577836800, 1577923200]


def test_load_rss_rejects_atom_document():
    with pytest.raises(ShapeError):
        load_rss(URL, fetcher=_fetcher(ATOM))


def test_load_atom_rejects_rss_document():
    with pytest.raises(ShapeError):
        load_atom(URL, fetcher=_fetcher(RSS))


def test_load_without_network_or_cache_fails():
    with pytest.raises(FetchError):
        load_rss(URL, fetcher=_fetcher(TransportError("down")))


def test_load_rss_serves_stale_cache(tmp_path):
    fetcher = _fetcher(TransportError("down"), cache_dir=tmp_path, cache_expire=60)
    fetcher.cache.write(URL, RSS)
    old = time.time() - 3600
    os.utime(fetcher.cache.path_for(URL), (old, old))

    feed = load_rss(URL, fetcher=fetcher)
    assert feed.entries[0].findtext("title") == "A"
    assert len(fetcher.transport.calls) == 1


def test_load_rss_with_config_builds_fetcher(tmp_path):
    config = FeedConfig(cache_dir=tmp_path)
    Fetcher(config).cache.write(URL, RSS)
    feed = load_rss(URL, config=config)
    assert feed.findtext("title") == "Example"


def test_field_access():
    feed = load_rss(URL, fetcher=_fetcher(RSS))
    assert str(feed.title) == "Example"
    assert feed.get("link").text == "https://example.com/"
    assert feed.findtext("link") == "https://example.com/"
    assert len(feed.getall("item")) == 1


def test_unknown_field_is_none():
    feed = load_rss(URL, fetcher=_fetcher(RSS))
    assert feed.nonexistent is None
    assert feed.get("nonexistent") is None
    assert feed.getall("nonexistent") == []
    assert feed.findtext("nonexistent") is None


def test_feed_is_read_only():
    feed = load_rss(URL, fetcher=_fetcher(RSS))
    with pytest.raises(UsageError, match="read-only property 'title'"):
        feed.title = "changed"
    with pytest.raises(UsageError):
        feed.anything = 1
    with pytest.raises(AttributeError):
        del feed.title
    assert str(feed.title) == "Example"


def test_to_dict():
    feed = load_rss(URL, fetcher=_fetcher(RSS))
    data = feed.to_dict()
    assert list(data) == ["title", "link", "item"]
    assert data["title"] == "Example"
    item = data["item"]
    assert item["title"] == "A"
    assert item["category"] == ["one", "two"]
    assert item["dc:creator"] == "Jane"
    assert item["timestamp"] == "1577836800"


def test_to_dict_multiple_entries_become_list():
    feed = load_atom(URL, fetcher=_fetcher(ATOM))
    data = feed.to_dict()
    assert [e["title"] for e in data["entry"]] == ["First", "Second"]


def test_to_dict_of_child_node_and_idempotence():
    feed = load_rss(URL, fetcher=_fetcher(RSS))
    item = feed.entries[0]
    assert feed.to_dict(item) == item.to_dict()
    assert feed.to_dict() == feed.to_dict()
    assert feed.to_dict(feed.get("title")) == "Example"
