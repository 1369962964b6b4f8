#!/usr/bin/env python
"""
Test module for ID extraction from export columns.
Run this module from the root directory:
python -m tests.test_field_extractor
"""

import sys
import unittest
import logging

from facebook_ads_importer.field_extractor import (
    extract_from_permalink,
    extract_from_story_id,
    extract_page_id_from_link_object_id,
    parse_id_field,
    resolve_post_reference,
    strip_page_prefix,
)

# Setup logging with stdout handler
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


class ParseIdFieldTests(unittest.TestCase):
    """Scientific-notation recovery for IDs mangled by spreadsheets."""

    def setUp(self):
        print(f"\n{'='*70}")

    def test_scientific_notation_is_expanded_exactly(self):
        print("\nTEST: Scientific Notation Expansion")
        self.assertEqual(parse_id_field("1.04882E+14"), "104882000000000")
        self.assertEqual(parse_id_field("7.24361597203916e14"), "724361597203916")
        self.assertEqual(parse_id_field("5E3"), "5000")

    def test_plain_values_are_unquoted(self):
        self.assertEqual(parse_id_field('"104882489141131"'), "104882489141131")
        self.assertEqual(parse_id_field("'o:123'"), "o:123")
        self.assertEqual(parse_id_field('="123456"'), "123456")
        self.assertEqual(parse_id_field("  s:99  "), "s:99")

    def test_empty_and_missing(self):
        self.assertEqual(parse_id_field(None), "")
        self.assertEqual(parse_id_field(""), "")
        self.assertEqual(parse_id_field("  "), "")

    def test_non_integer_exponent_forms_are_returned_unchanged(self):
        # The exponent does not cover the fraction, so this is not an ID
        self.assertEqual(parse_id_field("1.2345E+2"), "1.2345E+2")
        self.assertEqual(parse_id_field("pfbidE02abc"), "pfbidE02abc")
        self.assertEqual(parse_id_field("Ex"), "Ex")


class ExtractorTests(unittest.TestCase):
    """Page and post id extraction from individual columns."""

    def setUp(self):
        print(f"\n{'='*70}")

    def test_link_object_id_requires_prefix(self):
        self.assertEqual(extract_page_id_from_link_object_id("o:104882489141131"), "104882489141131")
        self.assertEqual(extract_page_id_from_link_object_id("104882489141131"), "")
        self.assertEqual(extract_page_id_from_link_object_id("o:abc"), "")
        self.assertEqual(extract_page_id_from_link_object_id(None), "")

    def test_permalink_with_numeric_page(self):
        print("\nTEST: Permalink Extraction")
        ids = extract_from_permalink(
            "https://www.facebook.com/104882489141131/posts/724361597203916"
        )
        self.assertEqual(ids.page_id, "104882489141131")
        self.assertEqual(ids.post_id, "724361597203916")

    def test_permalink_with_vanity_page_keeps_post_only(self):
        ids = extract_from_permalink("https://www.facebook.com/mybrand/posts/pfbid02AbCdEf?ref=share")
        self.assertEqual(ids.page_id, "")
        self.assertEqual(ids.post_id, "pfbid02AbCdEf")

    def test_video_permalink(self):
        ids = extract_from_permalink("https://facebook.com/123456789012/videos/987654321098")
        self.assertEqual(ids, ("123456789012", "987654321098"))

    def test_page_is_segment_before_posts(self):
        ids = extract_from_permalink("https://www.facebook.com/pages/Foo/123456789012/posts/456789")
        self.assertEqual(ids, ("123456789012", "456789"))

    def test_unrelated_url(self):
        self.assertEqual(extract_from_permalink("https://example.com/page"), ("", ""))
        self.assertEqual(extract_from_permalink(""), ("", ""))

    def test_story_id_forms(self):
        self.assertEqual(extract_from_story_id("s:724361597203916"), "724361597203916")
        self.assertEqual(extract_from_story_id("724361597203916"), "724361597203916")
        self.assertEqual(extract_from_story_id("7.24361597203916E+14"), "724361597203916")
        self.assertEqual(extract_from_story_id("story"), "")

    def test_strip_page_prefix(self):
        self.assertEqual(strip_page_prefix("111_222", "111"), "222")
        self.assertEqual(strip_page_prefix("222", "111"), "222")
        self.assertEqual(strip_page_prefix("111_222", ""), "111_222")


class ResolvePostReferenceTests(unittest.TestCase):
    """Priority order between Link Object ID, Permalink, Story ID and fallback."""

    def setUp(self):
        print(f"\n{'='*70}")

    def test_link_object_id_wins_for_page(self):
        reference = resolve_post_reference(
            {
                "Link Object ID": "o:111111111111",
                "Permalink": "https://www.facebook.com/222222222222/posts/3333333333333",
            }
        )
        self.assertEqual(reference.page_id, "111111111111")
        self.assertEqual(reference.page_source, "Link Object ID")
        self.assertEqual(reference.post_id, "3333333333333")
        self.assertEqual(reference.post_source, "Permalink")

    def test_permalink_beats_story_id_for_post(self):
        reference = resolve_post_reference(
            {
                "Permalink": "https://www.facebook.com/222222222222/posts/3333333333333",
                "Story ID": "s:4444444444444",
            }
        )
        self.assertEqual(reference.post_id, "3333333333333")

    def test_story_id_never_supplies_page(self):
        reference = resolve_post_reference({"Story ID": "s:4444444444444"})
        self.assertEqual(reference.page_id, "")
        self.assertEqual(reference.post_id, "4444444444444")
        self.assertEqual(reference.post_source, "Story ID")

    def test_fallback_page(self):
        reference = resolve_post_reference({"Story ID": "4444444444444"}, "555555555555")
        self.assertEqual(reference.page_id, "555555555555")
        self.assertEqual(reference.page_source, "fallback")

    def test_compound_story_id_is_reduced_to_post(self):
        print("\nTEST: Compound Post ID")
        reference = resolve_post_reference(
            {
                "Link Object ID": "o:111111111111",
                "Permalink": "https://www.facebook.com/111111111111/posts/111111111111_999999999999",
            }
        )
        self.assertEqual(reference.post_id, "999999999999")


def main():
    unittest.main(argv=[sys.argv[0]])


if __name__ == "__main__":
    main()
