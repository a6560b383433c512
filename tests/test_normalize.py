from __future__ import annotations

import io
import json
import unittest

from ugc_ingest.errors import EmptyResultError, PerItemParseError, ProviderItemError
from ugc_ingest.normalize import (
    merge_hashtags,
    normalize_items,
    parse_item,
    resolve_video_thumbnail,
    thumbnail_from_cdn_path,
    thumbnail_from_video_extension,
)
from ugc_ingest.run_log import RunLogger


class TestParseItem(unittest.TestCase):
    def test_image_item(self) -> None:
        post = parse_item(
            {
                "id": "123",
                "url": "https://www.instagram.com/p/ABC/",
                "caption": "Ride day #tdr #hpz",
                "hashtags": ["hpz", "oneteamstore"],
                "displayUrl": "https://instagram.fabc1-1.fna.fbcdn.net/v/img.jpg",
                "ownerUsername": "rider",
                "likesCount": 10,
                "commentsCount": 2,
                "timestamp": "2025-01-01T00:00:00Z",
            }
        )

        self.assertEqual(post.id, "123")
        self.assertEqual(post.permalink, "https://www.instagram.com/p/ABC/")
        self.assertEqual(post.media_type, "image")
        self.assertEqual(post.media_url, "https://instagram.fabc1-1.fna.fbcdn.net/v/img.jpg")
        self.assertIsNone(post.thumbnail_url)
        self.assertEqual(post.author_username, "rider")
        self.assertEqual(post.hashtags, ("tdr", "hpz", "oneteamstore"))
        self.assertEqual(post.status, "new")
        self.assertEqual(post.platform, "instagram")
        self.assertEqual(post.created_at, "2025-01-01T00:00:00Z")

    def test_video_iff_video_url_present(self) -> None:
        post = parse_item(
            {
                "id": 9,
                "url": "https://www.instagram.com/reel/XYZ/",
                "videoUrl": "https://example.com/v/clip.mp4",
                "displayUrl": "https://example.com/v/cover.jpg",
            }
        )
        self.assertEqual(post.media_type, "video")
        self.assertEqual(post.id, "9")
        self.assertEqual(post.media_url, "https://example.com/v/clip.mp4")
        self.assertEqual(post.thumbnail_url, "https://example.com/v/cover.jpg")

    def test_defaults_for_missing_fields(self) -> None:
        post = parse_item({"postId": 77, "shortCode": "SC1"}, now="2025-02-02T00:00:00+00:00")

        self.assertEqual(post.id, "77")
        self.assertEqual(post.permalink, "https://www.instagram.com/p/SC1/")
        self.assertEqual(post.media_url, post.permalink)
        self.assertEqual(post.author_username, "unknown")
        self.assertEqual(post.caption, "")
        self.assertEqual(post.likes_count, 0)
        self.assertEqual(post.comments_count, 0)
        self.assertEqual(post.created_at, "2025-02-02T00:00:00+00:00")

    def test_counters_are_coerced(self) -> None:
        post = parse_item(
            {
                "id": "1",
                "url": "https://www.instagram.com/p/A/",
                "likesCount": -1,
                "commentsCount": "1,204",
            }
        )
        self.assertEqual(post.likes_count, 0)
        self.assertEqual(post.comments_count, 1204)

        post = parse_item(
            {"id": "2", "url": "https://www.instagram.com/p/B/", "likes": True, "comments": "many"}
        )
        self.assertEqual(post.likes_count, 0)
        self.assertEqual(post.comments_count, 0)

    def test_owner_object_author(self) -> None:
        post = parse_item(
            {"id": "1", "url": "https://www.instagram.com/p/A/", "owner": {"username": "nested"}}
        )
        self.assertEqual(post.author_username, "nested")

    def test_missing_permalink_raises(self) -> None:
        with self.assertRaises(PerItemParseError):
            parse_item({"id": "1", "caption": "no link"})

    def test_non_mapping_raises(self) -> None:
        with self.assertRaises(PerItemParseError):
            parse_item(["not", "a", "dict"])

    def test_short_code_is_not_an_id(self) -> None:
        with self.assertRaises(PerItemParseError):
            parse_item({"shortCode": "SC1"})
        with self.assertRaises(PerItemParseError):
            parse_item({"url": "https://www.instagram.com/p/X/", "shortCode": "X"})


class TestThumbnailResolution(unittest.TestCase):
    def test_images_array_is_second_choice(self) -> None:
        item = {"images": ["https://example.com/first.jpg", "https://example.com/second.jpg"]}
        self.assertEqual(
            resolve_video_thumbnail(item, "https://example.com/v.mp4"),
            "https://example.com/first.jpg",
        )

    def test_extension_swap(self) -> None:
        self.assertEqual(
            thumbnail_from_video_extension("https://example.com/a/b/clip.mp4?token=1"),
            "https://example.com/a/b/clip.jpg",
        )
        self.assertIsNone(thumbnail_from_video_extension("https://example.com/a/b/clip"))

    def test_cdn_path_rebuild(self) -> None:
        url = "https://instagram.fxyz1-2.fna.fbcdn.net/o1/v/t16/f2/m86/AQNabc123"
        self.assertEqual(
            thumbnail_from_cdn_path(url),
            "https://instagram.fxyz1-2.fna.fbcdn.net/v/t51.2885-15/AQNabc123.jpg",
        )
        self.assertIsNone(thumbnail_from_cdn_path("https://example.com/o1/v/AQNabc123"))

    def test_cdn_rebuild_used_when_nothing_else_applies(self) -> None:
        item = {"id": "1", "url": "https://www.instagram.com/reel/R/", "videoUrl": (
            "https://instagram.fxyz1-2.fna.fbcdn.net/o1/v/t16/f2/m86/AQNabc123"
        )}
        post = parse_item(item)
        self.assertEqual(
            post.thumbnail_url,
            "https://instagram.fxyz1-2.fna.fbcdn.net/v/t51.2885-15/AQNabc123.jpg",
        )

    def test_no_thumbnail_is_not_an_error(self) -> None:
        post = parse_item(
            {"id": "1", "url": "https://www.instagram.com/reel/R/", "videoUrl": "https://example.com/stream"}
        )
        self.assertEqual(post.media_type, "video")
        self.assertIsNone(post.thumbnail_url)


class TestHashtags(unittest.TestCase):
    def test_union_is_case_sensitive(self) -> None:
        self.assertEqual(
            merge_hashtags("#TDR and #tdr and #tdr", ["TDR", "hpz"]),
            ("TDR", "tdr", "hpz"),
        )


class TestNormalizeItems(unittest.TestCase):
    def test_malformed_items_are_dropped_and_logged(self) -> None:
        buf = io.StringIO()
        log = RunLogger(stream=buf)

        posts = normalize_items(
            [
                {"id": "1", "url": "https://www.instagram.com/p/A/"},
                {"caption": "missing everything"},
                "garbage",
                {"error": "rate_limited", "errorDescription": "mixed batch sentinel"},
                {"id": "2", "url": "https://www.instagram.com/p/B/"},
            ],
            logger=log,
        )

        self.assertEqual([p.id for p in posts], ["1", "2"])
        events = [json.loads(line) for line in buf.getvalue().splitlines()]
        dropped = [e for e in events if e["event"] == "item_dropped"]
        self.assertEqual(len(dropped), 3)
        self.assertTrue(all(e["level"] == "DEBUG" for e in dropped))

    def test_items_without_id_never_reach_output(self) -> None:
        posts = normalize_items(
            [
                {"shortCode": "SC1"},
                {"url": "https://www.instagram.com/p/X/", "shortCode": "X"},
                {"id": "1", "url": "https://www.instagram.com/p/A/"},
            ]
        )
        self.assertEqual([p.id for p in posts], ["1"])

    def test_no_items_sentinel_rejects_batch(self) -> None:
        with self.assertRaises(EmptyResultError) as ctx:
            normalize_items([{"error": "no_items", "errorDescription": "Empty or private data"}])
        self.assertIn("no items", str(ctx.exception))

    def test_other_sentinel_rejects_batch(self) -> None:
        with self.assertRaises(ProviderItemError) as ctx:
            normalize_items([{"error": "blocked", "errorDescription": "login required"}])
        self.assertNotIsInstance(ctx.exception, EmptyResultError)
        self.assertIn("blocked", str(ctx.exception))

    def test_empty_list_is_not_an_error(self) -> None:
        self.assertEqual(normalize_items([]), [])


if __name__ == "__main__":
    unittest.main()
