"""
Unit Tests for the Merge Engine
===============================
"""

from datetime import datetime, timezone

import pytest

from clusterfeed.models import EPOCH, FeedItem, ParsedFeed
from clusterfeed.processing.merge import (
    MergeEngine,
    decorate_title,
    deduplicate,
    sort_newest_first,
)
from clusterfeed.processing.rewrite import LinkRewriter


def day(n: int) -> datetime:
    return datetime(2024, 1, n, tzinfo=timezone.utc)


def engine(**kwargs) -> MergeEngine:
    options = {"rewriter": LinkRewriter(), "fallback_title": "Untitled", "dedupe": False}
    options.update(kwargs)
    return MergeEngine(**options)


class TestDecorateTitle:

    def test_label_prefix(self):
        assert decorate_title("Market Update", "Reuters", "Untitled") == "(Reuters) Market Update"

    def test_no_label(self):
        assert decorate_title("Market Update", None, "Untitled") == "Market Update"

    @pytest.mark.parametrize("title", [None, "", "   "])
    def test_fallback_title(self, title):
        assert decorate_title(title, "Wire", "Untitled") == "(Wire) Untitled"
        assert decorate_title(title, None, "Untitled") == "Untitled"


class TestOrdering:

    def test_newest_first(self):
        items = [FeedItem(title=str(n), pub_date=day(n)) for n in (2, 5, 1, 3)]
        assert [i.title for i in sort_newest_first(items)] == ["5", "3", "2", "1"]

    def test_undated_items_sort_last(self):
        items = [
            FeedItem(title="undated"),
            FeedItem(title="old", pub_date=datetime(1999, 1, 1, tzinfo=timezone.utc)),
        ]
        assert [i.title for i in sort_newest_first(items)] == ["old", "undated"]
        assert items[0].effective_date == EPOCH

    def test_ties_keep_input_order(self):
        items = [FeedItem(title=t, pub_date=day(1)) for t in ("a", "b", "c")]
        assert [i.title for i in sort_newest_first(items)] == ["a", "b", "c"]

    def test_naive_dates_are_utc(self):
        item = FeedItem(pub_date=datetime(2024, 1, 1, 12, 0))
        assert item.pub_date.tzinfo == timezone.utc


class TestDeduplicate:

    def test_guid_then_link(self):
        items = [
            FeedItem(title="1", guid="g1", link="https://x/1"),
            FeedItem(title="2", guid="g1", link="https://x/2"),
            FeedItem(title="3", link="https://x/3"),
            FeedItem(title="4", link="https://x/3"),
            FeedItem(title="5"),
            FeedItem(title="6"),
        ]
        assert [i.title for i in deduplicate(items)] == ["1", "3", "5", "6"]


class TestMergeEngine:
    """Flattening, normalization and sorting across sources."""

    def test_merge_across_sources(self):
        a = ParsedFeed(items=[
            FeedItem(title="A1", link="https://a.example/1", pub_date=day(1)),
            FeedItem(title="A3", link="https://a.example/3", pub_date=day(3)),
        ])
        b = ParsedFeed(items=[FeedItem(link="https://b.example/2", pub_date=day(2))])

        merged = engine().merge([(a, None), (b, "Wire")])

        assert [i.title for i in merged] == ["A3", "(Wire) Untitled", "A1"]
        assert merged[1].source_label == "Wire"

    def test_every_item_from_every_source_survives(self):
        feeds = [
            (ParsedFeed(items=[FeedItem(title=f"{s}-{n}") for n in range(3)]), s)
            for s in ("x", "y")
        ]
        assert len(engine().merge(feeds)) == 6

    def test_links_are_rewritten(self, protected_settings):
        merge = engine(rewriter=LinkRewriter.from_origin(protected_settings.origin))
        link = "https://mirror.internal:8443/post/9"
        feed = ParsedFeed(items=[FeedItem(title="t", link=link, guid=link)])

        item = merge.merge([(feed, None)])[0]

        assert item.link == "https://news.example.com/post/9"
        assert item.guid == "https://news.example.com/post/9"

    def test_opaque_guid_left_alone(self, protected_settings):
        merge = engine(rewriter=LinkRewriter.from_origin(protected_settings.origin))
        feed = ParsedFeed(items=[
            FeedItem(title="t", link="https://mirror.internal:8443/a", guid="urn:uuid:1"),
        ])
        assert merge.merge([(feed, None)])[0].guid == "urn:uuid:1"

    def test_source_items_not_mutated(self):
        original = FeedItem(title="t", link="https://a.example/1")
        engine().merge([(ParsedFeed(items=[original]), "L")])
        assert original.title == "t"
        assert original.source_label is None

    def test_dedupe_opt_in(self):
        feed = ParsedFeed(items=[FeedItem(title="t", guid="g"), FeedItem(title="t", guid="g")])
        assert len(engine().merge([(feed, None)])) == 2
        assert len(engine(dedupe=True).merge([(feed, None)])) == 1

    def test_max_items_keeps_newest(self):
        feed = ParsedFeed(items=[FeedItem(title=str(n), pub_date=day(n)) for n in range(1, 6)])
        merged = engine(max_items=2).merge([(feed, None)])
        assert [i.title for i in merged] == ["5", "4"]

    def test_defaults_from_settings(self, make_settings):
        settings = make_settings(output={"fallback_title": "No title", "deduplicate": True, "max_items": 10})
        merge = MergeEngine(settings=settings)
        assert merge.fallback_title == "No title"
        assert merge.dedupe is True
        assert merge.max_items == 10

    def test_empty_input(self):
        assert engine().merge([]) == []
