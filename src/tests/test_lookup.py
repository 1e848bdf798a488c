"""
Tests for active-caption lookup.
"""

import random

from dubstudio.lookup import CaptionIndex, find_active
from dubstudio.models import Caption


def _caps(*spans):
    return [Caption(id=f"caption-{i}", start=s, end=e, text=f"c{i}") for i, (s, e) in enumerate(spans)]


def test_boundary_belongs_to_earlier_caption():
    caps = [
        Caption(id="a", start=0.0, end=2.0, text="Hello"),
        Caption(id="b", start=2.0, end=4.0, text="World"),
    ]
    assert find_active(2.0, caps).id == "a"
    assert CaptionIndex(caps).find(2.0).id == "a"
    assert CaptionIndex(caps).find(2.01).id == "b"


def test_gap_and_out_of_range_return_none():
    caps = _caps((1.0, 2.0), (3.0, 4.0))
    index = CaptionIndex(caps)
    for t in (0.0, 0.99, 2.5, 4.01, 100.0):
        assert find_active(t, caps) is None
        assert index.find(t) is None


def test_overlap_resolves_to_first_stored():
    caps = _caps((0.0, 5.0), (1.0, 2.0), (4.0, 6.0))
    index = CaptionIndex(caps)
    assert index.find(1.5).id == "caption-0"
    assert index.find(4.5).id == "caption-0"
    assert index.find(5.5).id == "caption-2"


def test_long_caption_behind_short_ones():
    # a later-starting short caption must not hide an earlier long one
    caps = _caps((0.0, 10.0), (2.0, 3.0), (4.0, 5.0))
    index = CaptionIndex(caps)
    assert index.find(6.0).id == "caption-0"
    assert index.find(4.5).id == "caption-0"


def test_empty_index():
    assert CaptionIndex([]).find(1.0) is None
    assert find_active(1.0, []) is None


def test_unsorted_input_uses_stored_order():
    caps = _caps((5.0, 6.0), (0.0, 10.0))
    assert CaptionIndex(caps).find(5.5).id == "caption-0"


def test_index_matches_linear_scan():
    rng = random.Random(7)
    spans = []
    for _ in range(200):
        start = round(rng.uniform(0, 100), 2)
        spans.append((start, start + round(rng.uniform(0.1, 8.0), 2)))
    spans.sort(key=lambda s: s[0])
    caps = _caps(*spans)
    index = CaptionIndex(caps)
    for _ in range(2000):
        t = round(rng.uniform(-1, 110), 2)
        assert index.find(t) is find_active(t, caps)
