#!/usr/bin/env python3
"""
Tests for image deduplication.
"""

from dedup_manager import SeenUrlIndex, deduplicate_records
from spotlight_parser import ImageRecord


def records(*uris):
    return [ImageRecord(source_uri=uri) for uri in uris]


def test_case_insensitive_first_occurrence_wins():
    result = deduplicate_records(records("A/img.jpg", "a/IMG.jpg", "B/x.png"))
    assert [r.source_uri for r in result] == ["A/img.jpg", "B/x.png"]


def test_empty_uris_are_dropped_and_do_not_claim_a_slot():
    result = deduplicate_records(records("", "https://x/1.jpg", "", "https://x/2.jpg"))
    assert [r.source_uri for r in result] == ["https://x/1.jpg", "https://x/2.jpg"]


def test_order_is_preserved():
    uris = ["https://x/3.jpg", "https://x/1.jpg", "https://x/2.jpg", "https://x/1.jpg"]
    result = deduplicate_records(records(*uris))
    assert [r.source_uri for r in result] == uris[:3]


def test_shared_index_spans_calls():
    index = SeenUrlIndex()
    deduplicate_records(records("https://x/1.jpg"), index)
    result = deduplicate_records(records("HTTPS://X/1.JPG", "https://x/2.jpg"), index)

    assert [r.source_uri for r in result] == ["https://x/2.jpg"]
    assert len(index) == 2
    assert index.has_url("https://X/2.jpg")


def test_empty_input():
    assert deduplicate_records([]) == []


def test_comparison_is_not_unicode_case_folding():
    # "ß" and "SS" are different characters even though casefold() maps them together
    result = deduplicate_records(records("https://x/straße.jpg", "https://x/STRASSE.jpg"))
    assert [r.source_uri for r in result] == ["https://x/straße.jpg", "https://x/STRASSE.jpg"]


def test_non_ascii_case_variants_are_duplicates():
    result = deduplicate_records(records("https://x/Ärger.jpg", "https://x/ärger.JPG"))
    assert [r.source_uri for r in result] == ["https://x/Ärger.jpg"]
