from feed_parser import parse_feed
from feedsamples import feed_of, make_source
from models import Item
from tracker import SeenTracker, TrackerState


def _items(*video_ids, source=None):
    return parse_feed(feed_of(*video_ids), source or make_source())


def test_first_observation_is_a_silent_baseline():
    source = make_source()
    tracker = SeenTracker({}, cap=100)
    assert tracker.state_of(source.id) is TrackerState.UNINITIALIZED

    observation = tracker.observe(source, _items("v5", "v4", "v3", "v2", "v1"))

    assert observation.baseline is True
    assert observation.new_items == []
    assert tracker.state_of(source.id) is TrackerState.BASELINED
    assert all(tracker.is_seen(source.id, vid) for vid in ("v1", "v2", "v3", "v4", "v5"))


def test_empty_payload_still_baselines():
    source = make_source()
    tracker = SeenTracker({}, cap=100)

    tracker.observe(source, [])
    observation = tracker.observe(source, _items("first"))

    assert [item.item_id for item in observation.new_items] == ["first"]


def test_unchanged_payload_yields_nothing_on_second_cycle():
    source = make_source()
    tracker = SeenTracker({}, cap=100)
    tracker.observe(source, _items("b", "a"))

    first = tracker.observe(source, _items("c", "b", "a"))
    second = tracker.observe(source, _items("c", "b", "a"))

    assert [item.item_id for item in first.new_items] == ["c"]
    assert second.new_items == []
    assert tracker.state_of(source.id) is TrackerState.STEADY


def test_new_items_are_emitted_oldest_first():
    source = make_source()
    tracker = SeenTracker({}, cap=100)
    tracker.observe(source, _items("old"))

    observation = tracker.observe(source, _items("new3", "new2", "new1", "old"))

    assert [item.item_id for item in observation.new_items] == ["new1", "new2", "new3"]


def test_new_items_are_marked_seen_immediately():
    source = make_source()
    seen = {}
    tracker = SeenTracker(seen, cap=100)
    tracker.observe(source, _items("old"))

    tracker.observe(source, _items("fresh", "old"))

    assert "fresh" in seen[source.id]
    assert seen[source.id]["fresh"]["title"] == "Video fresh"


def test_sources_are_tracked_independently():
    a = make_source("UCaaaaaaaaaaaaaaaaaaaaaa", "A")
    b = make_source("UCbbbbbbbbbbbbbbbbbbbbbb", "B")
    tracker = SeenTracker({}, cap=100)
    tracker.observe(a, _items("shared", source=a))
    tracker.observe(b, [])

    observation = tracker.observe(b, _items("shared", source=b))

    assert [item.item_id for item in observation.new_items] == ["shared"]


def test_eviction_drops_exactly_the_oldest_identifiers():
    source = make_source()
    cap = 10
    seen = {}
    tracker = SeenTracker(seen, cap=cap)
    tracker.observe(source, [])

    ids = [f"id{n:02d}" for n in range(cap + 5)]
    notified = []
    for video_id in ids:
        observation = tracker.observe(source, _items(video_id))
        notified.extend(item.item_id for item in observation.new_items)

    assert notified == ids
    assert list(seen[source.id]) == ids[5:]
    assert all(not tracker.is_seen(source.id, video_id) for video_id in ids[:5])


def test_eviction_never_drops_items_still_in_the_feed():
    source = make_source()
    seen = {}
    tracker = SeenTracker(seen, cap=3)
    window = ["e", "d", "c", "b", "a"]
    tracker.observe(source, _items(*window))

    assert set(seen[source.id]) == set(window)
    again = tracker.observe(source, _items(*window))
    assert again.new_items == []


def test_duplicate_ids_in_one_payload_count_once():
    source = make_source()
    tracker = SeenTracker({}, cap=100)
    tracker.observe(source, [])
    dup = Item(item_id="x", title="X", link="https://example.com/x")

    observation = tracker.observe(source, [dup, dup])

    assert len(observation.new_items) == 1
