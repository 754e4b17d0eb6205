from __future__ import annotations

import random

from engine.build import build_tree
from geo.bbox import BBox
from listings.synthetic import generate_properties

ROOT = BBox(min_lon=-100.0, min_lat=16.0, max_lon=-84.0, max_lat=32.0)


def test_parent_counts_equal_sum_of_children(make_record):
    rng = random.Random(7)
    records = [
        make_record(
            f"p{i}",
            rng.uniform(16.0, 32.0),
            rng.uniform(-100.0, -84.0),
            listing_type=rng.choice(["sale", "rent"]),
            property_type=rng.choice(["house", "apartment", "land"]),
            price=rng.uniform(1e5, 1e7),
        )
        for i in range(600)
    ]
    result = build_tree(records, root=ROOT, max_level=6)
    nodes = {n.id: n for n in result.nodes}

    children: dict[str, list] = {}
    for n in result.nodes:
        if n.parent_id is not None:
            children.setdefault(n.parent_id, []).append(n)

    assert nodes["0"].total_count == 600
    for pid, kids in children.items():
        parent = nodes[pid]
        assert parent.total_count == sum(k.total_count for k in kids)
        for key, count in parent.counts_by_subcategory.items():
            assert count == sum(k.counts_by_subcategory.get(key, 0) for k in kids)
        assert parent.min_price == min(k.min_price for k in kids)
        assert parent.max_price == max(k.max_price for k in kids)

    # Every level partitions the same points.
    for level in range(0, 7):
        assert sum(n.total_count for n in result.nodes if n.level == level) == 600


def test_subcategory_keys_cover_each_category_combination(make_record):
    records = [
        make_record("a", 20.0, -96.0, listing_type="sale", property_type="house"),
        make_record("b", 20.1, -96.1, listing_type="rent", property_type="house"),
        make_record("c", 20.2, -96.2, listing_type="sale", property_type="land"),
    ]
    root_node = next(n for n in build_tree(records, root=ROOT, max_level=3).nodes if n.id == "0")
    assert root_node.counts_by_subcategory == {
        "*/house": 2,
        "*/land": 1,
        "rent/*": 1,
        "rent/house": 1,
        "sale/*": 2,
        "sale/house": 1,
        "sale/land": 1,
    }
    assert root_node.count_for(None) == 3
    assert root_node.count_for("rent/land") == 0


def test_points_outside_root_are_not_in_any_node(make_record):
    records = [
        make_record("in", 20.0, -96.0, price=100.0),
        make_record("in2", 22.0, -94.0, price=300.0),
        make_record("out", 40.0, -96.0),
    ]
    result = build_tree(records, root=ROOT, max_level=4)
    assert result.outside_root == 1
    assert result.point_count == 3
    assert "out" not in result.leaf_cells

    root_node = next(n for n in result.nodes if n.id == "0")
    assert root_node.total_count == 2
    assert root_node.center_lat == 21.0
    assert root_node.center_lng == -95.0
    assert root_node.avg_price == 200.0
    assert all(n.total_count > 0 for n in result.nodes)


def test_build_over_synthetic_mexico_dataset():
    records = generate_properties(2_000, seed=3)
    mexico = BBox(min_lon=-118.5, min_lat=14.0, max_lon=-86.0, max_lat=33.0)
    result = build_tree(records, root=mexico, max_level=8)
    assert result.outside_root == 0
    assert sorted({n.level for n in result.nodes}) == list(range(0, 9))
    assert sum(n.total_count for n in result.nodes if n.level == 8) == 2_000
