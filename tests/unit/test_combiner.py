"""
Unit tests for merging detections across providers.
"""

import pytest

from diettrack.models import DetectedItem, DetectionResult
from diettrack.services.combiner import combine_detections, merge_key

from conftest import make_item


def result(provider, items, confidence=0.6, ms=10.0):
    return DetectionResult(provider=provider, items=items, confidence=confidence, processing_time_ms=ms)


class TestMergeKey:

    @pytest.mark.unit
    def test_positive_id(self):
        assert merge_key(make_item(item_id=3, name="Dal"), 0) == "id:3"

    @pytest.mark.unit
    def test_name_when_no_id(self):
        assert merge_key(make_item(item_id=None, name="  Dal "), 4) == "name:dal"

    @pytest.mark.unit
    def test_index_as_last_resort(self):
        assert merge_key(DetectedItem(item_id=0, name=" "), 4) == "idx:4"


class TestCombineDetections:

    @pytest.mark.unit
    def test_no_results_is_empty_conservative(self):
        combined = combine_detections([])
        assert combined.items == []
        assert combined.confidence == 0.5

    @pytest.mark.unit
    def test_single_result_unchanged(self):
        only = result("openai", [make_item(item_id=7, confidence=0.9)], confidence=0.42)
        assert combine_detections([only]) is only

    @pytest.mark.unit
    def test_same_id_merges_with_mean_confidence(self):
        a = result("openai", [make_item(item_id=1, name="rice", confidence=0.6, calories=200)])
        b = result("generic", [make_item(item_id=1, name="white rice", confidence=0.8, calories=999)])

        combined = combine_detections([a, b])

        assert len(combined.items) == 1
        merged = combined.items[0]
        assert merged.confidence == pytest.approx(0.7)
        # Everything else comes from the first member
        assert merged.name == "rice"
        assert merged.nutrition.calories == 200

    @pytest.mark.unit
    def test_group_order_follows_first_appearance(self):
        a = result("a", [make_item(item_id=2, name="dal"), make_item(item_id=1, name="rice")])
        b = result("b", [make_item(item_id=3, name="roti"), make_item(item_id=2, name="dal")])

        combined = combine_detections([a, b])

        assert [i.item_id for i in combined.items] == [2, 1, 3]

    @pytest.mark.unit
    def test_missing_ids_get_group_index(self):
        a = result("a", [make_item(item_id=None, name="Raita")])
        b = result("b", [make_item(item_id=None, name="raita"), make_item(item_id=None, name="pickle")])

        combined = combine_detections([a, b])

        assert [(i.name, i.item_id) for i in combined.items] == [("Raita", 1), ("pickle", 2)]

    @pytest.mark.unit
    def test_anonymous_items_merge_by_position(self):
        a = result("a", [DetectedItem(name="", confidence=0.6)])
        b = result("b", [DetectedItem(name="", confidence=0.8)])

        combined = combine_detections([a, b])

        assert len(combined.items) == 1
        assert combined.items[0].confidence == pytest.approx(0.7)
        assert combined.items[0].item_id == 1

    @pytest.mark.unit
    def test_anonymous_items_at_different_positions_stay_apart(self):
        a = result("a", [DetectedItem(name="")])
        b = result("b", [make_item(item_id=5, name="dal"), DetectedItem(name="")])

        combined = combine_detections([a, b])

        assert len(combined.items) == 3

    @pytest.mark.unit
    def test_overall_confidence_is_mean_of_results(self):
        combined = combine_detections([
            result("a", [], confidence=0.9),
            result("b", [], confidence=0.5),
        ])
        assert combined.confidence == pytest.approx(0.7)

    @pytest.mark.unit
    def test_provider_names_and_timing(self):
        combined = combine_detections([
            result("openai", [], ms=120),
            result("generic", [], ms=3),
            result("openai", [], ms=80),
        ])
        assert combined.provider == "openai+generic"
        assert combined.processing_time_ms == 120

    @pytest.mark.unit
    def test_inputs_not_mutated(self):
        item = make_item(item_id=1, confidence=0.2)
        combine_detections([result("a", [item]), result("b", [make_item(item_id=1, confidence=1.0)])])
        assert item.confidence == 0.2
