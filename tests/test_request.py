from __future__ import annotations

import unittest
from datetime import timedelta

from ugc_ingest.request import ScrapeRequest, format_freshness_window, is_valid_instagram_url


class TestScrapeRequest(unittest.TestCase):
    def test_hashtag_request_builds_actor_input(self) -> None:
        req = ScrapeRequest.for_hashtag("#RideToThrive", results_limit=20, freshness_window="1 day")

        self.assertEqual(req.mode, "hashtag")
        self.assertEqual(req.targets, ("RideToThrive",))

        run_input = req.actor_input()
        self.assertEqual(run_input["directUrls"], ["https://www.instagram.com/explore/tags/RideToThrive/"])
        self.assertEqual(run_input["resultsLimit"], 20)
        self.assertEqual(run_input["resultsType"], "posts")
        self.assertEqual(run_input["searchType"], "hashtag")
        self.assertEqual(run_input["onlyPostsNewerThan"], "1 day")
        self.assertFalse(run_input["addParentData"])

    def test_hashtags_are_deduplicated_case_insensitively(self) -> None:
        req = ScrapeRequest.for_hashtags(["tdr", "#TDR", " hpz ", ""], results_limit=5)
        self.assertEqual(req.targets, ("tdr", "hpz"))
        self.assertNotIn("onlyPostsNewerThan", req.actor_input())

    def test_url_request(self) -> None:
        req = ScrapeRequest.for_urls(
            ["https://www.instagram.com/p/Cx1_a-B/", "https://instagram.com/some.rider"],
            results_limit=10,
        )
        self.assertEqual(req.search_type, "user")
        self.assertEqual(req.direct_urls(), list(req.targets))

    def test_invalid_url_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ScrapeRequest.for_urls(["https://example.com/p/abc/"], results_limit=10)

    def test_empty_targets_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ScrapeRequest.for_hashtags(["  ", "#"], results_limit=5)

    def test_results_limit_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            ScrapeRequest.for_hashtag("tdr", results_limit=0)

    def test_request_is_immutable(self) -> None:
        req = ScrapeRequest.for_hashtag("tdr", results_limit=5)
        with self.assertRaises(AttributeError):
            req.results_limit = 10  # type: ignore[misc]


class TestHelpers(unittest.TestCase):
    def test_freshness_window_formatting(self) -> None:
        self.assertIsNone(format_freshness_window(None))
        self.assertEqual(format_freshness_window(timedelta(days=1)), "1 day")
        self.assertEqual(format_freshness_window(timedelta(hours=6)), "6 hours")
        self.assertEqual(format_freshness_window(" 2 weeks "), "2 weeks")
        with self.assertRaises(ValueError):
            format_freshness_window(timedelta(0))

    def test_instagram_url_validation(self) -> None:
        self.assertTrue(is_valid_instagram_url("https://www.instagram.com/reel/abc123/"))
        self.assertTrue(is_valid_instagram_url("https://instagram.com/rider_one/"))
        self.assertFalse(is_valid_instagram_url("http://instagram.com/p/abc/"))
        self.assertFalse(is_valid_instagram_url("https://www.instagram.com/p/abc/extra/"))
        self.assertFalse(is_valid_instagram_url("https://example.com/p/abc/"))


if __name__ == "__main__":
    unittest.main()
