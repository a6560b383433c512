from __future__ import annotations

import io
import json
import tempfile
import unittest
from pathlib import Path
from typing import Callable

import httpx

from ugc_ingest.blob_store import LocalBlobStore
from ugc_ingest.config_schema import MediaConfig
from ugc_ingest.post import MediaAsset, NormalizedPost
from ugc_ingest.rehost import MediaRehoster, needs_rehost
from ugc_ingest.run_log import RunLogger

_PROXY = "https://proxy.example.com/api/proxy-image"
_CDN_IMAGE = "https://instagram.fabc1-1.fna.fbcdn.net/v/t51.2885-15/photo.jpg?stp=dst"
_CDN_VIDEO = "https://instagram.fabc1-1.fna.fbcdn.net/o1/v/t16/clip.mp4"


async def _no_sleep(seconds: float) -> None:
    return None


class _FailingStore:
    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        raise OSError("bucket unavailable")

    def public_url(self, key: str) -> str:
        return f"https://never/{key}"


def _rehoster(
    handler: Callable[[httpx.Request], httpx.Response],
    store: object,
    *,
    proxy_url: str | None = _PROXY,
    logger: RunLogger | None = None,
) -> MediaRehoster:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MediaRehoster(
        MediaConfig(proxy_url=proxy_url, max_retries=2),
        store,  # type: ignore[arg-type]
        client=client,
        logger=logger,
        sleep_fn=_no_sleep,
    )


class TestNeedsRehost(unittest.TestCase):
    def test_matches_cdn_hosts_only(self) -> None:
        patterns = MediaConfig().cdn_patterns
        self.assertTrue(needs_rehost(_CDN_IMAGE, patterns))
        self.assertTrue(needs_rehost("https://scontent.cdninstagram.com/x.jpg", patterns))
        self.assertFalse(needs_rehost("https://example.com/media/a.jpg", patterns))
        self.assertFalse(needs_rehost("https://example.com/?u=fbcdn.net", patterns))
        self.assertFalse(needs_rehost("", patterns))


class TestMediaRehoster(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.store = LocalBlobStore(self.root, public_base_url="https://cdn.example.com/ugc-images/")

    async def asyncTearDown(self) -> None:
        self._td.cleanup()

    async def test_non_cdn_url_passes_through(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, content=b"x")

        rehoster = _rehoster(handler, self.store)
        asset = rehoster.asset_for("https://example.com/media/a.jpg")
        out = await rehoster.rehost(asset)

        self.assertFalse(out.needs_rehost)
        self.assertFalse(out.rehosted)
        self.assertEqual(out.result_url, "https://example.com/media/a.jpg")
        self.assertEqual(calls, [])

    async def test_successful_rehost(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"\xff\xd8jpeg-bytes", headers={"content-type": "image/jpeg"})

        rehoster = _rehoster(handler, self.store)
        out = await rehoster.rehost(rehoster.asset_for(_CDN_IMAGE))

        self.assertTrue(out.rehosted)
        self.assertEqual(out.source_url, _CDN_IMAGE)
        self.assertTrue(out.result_url.startswith("https://cdn.example.com/ugc-images/ugc/user_post_"))
        self.assertTrue(out.result_url.endswith(".jpg"))
        self.assertEqual(seen[0].url.params["url"], _CDN_IMAGE)

        key = out.result_url.removeprefix("https://cdn.example.com/ugc-images/")
        self.assertEqual((self.root / key).read_bytes(), b"\xff\xd8jpeg-bytes")

    async def test_falls_back_after_all_retries(self) -> None:
        attempts = {"n": 0}
        buf = io.StringIO()

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["n"] += 1
            return httpx.Response(502)

        rehoster = _rehoster(handler, self.store, logger=RunLogger(stream=buf))
        asset = rehoster.asset_for(_CDN_IMAGE)
        out = await rehoster.rehost(asset)

        self.assertEqual(attempts["n"], 3)
        self.assertFalse(out.rehosted)
        self.assertEqual(out.result_url, _CDN_IMAGE)

        events = [json.loads(line) for line in buf.getvalue().splitlines()]
        failed = [e for e in events if e["event"] == "media_rehost_failed"]
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0]["level"], "WARN")

    async def test_empty_body_falls_back(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"")

        rehoster = _rehoster(handler, self.store)
        out = await rehoster.rehost(rehoster.asset_for(_CDN_IMAGE))
        self.assertEqual(out.result_url, _CDN_IMAGE)
        self.assertFalse(out.rehosted)

    async def test_upload_failure_falls_back(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"bytes")

        rehoster = _rehoster(handler, _FailingStore())
        out = await rehoster.rehost(rehoster.asset_for(_CDN_IMAGE))
        self.assertEqual(out.result_url, _CDN_IMAGE)

    async def test_disabled_proxy_keeps_source(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        rehoster = _rehoster(handler, self.store, proxy_url=None)
        self.assertFalse(rehoster.enabled)
        asset = MediaAsset.pending(_CDN_IMAGE, needs_rehost=True)
        out = await rehoster.rehost(asset)
        self.assertEqual(out, asset)

    async def test_missing_store_keeps_source(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        rehoster = _rehoster(handler, None)
        self.assertFalse(rehoster.enabled)
        asset = MediaAsset.pending(_CDN_IMAGE, needs_rehost=True)
        out = await rehoster.rehost(asset)
        self.assertEqual(out.result_url, _CDN_IMAGE)
        self.assertFalse(out.rehosted)

    async def test_rehost_post_updates_media_and_thumbnail(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            src = request.url.params["url"]
            ctype = "video/mp4" if src.endswith(".mp4") else "image/jpeg"
            return httpx.Response(200, content=b"data", headers={"content-type": ctype})

        post = NormalizedPost(
            id="1",
            permalink="https://www.instagram.com/reel/R/",
            media_url=_CDN_VIDEO,
            media_type="video",
            thumbnail_url=_CDN_IMAGE,
        )

        rehoster = _rehoster(handler, self.store)
        outcome = await rehoster.rehost_post(post)

        self.assertEqual(outcome.rehosted_count, 2)
        self.assertTrue(outcome.post.media_url.endswith(".mp4"))
        self.assertIsNotNone(outcome.post.thumbnail_url)
        assert outcome.post.thumbnail_url is not None
        self.assertTrue(outcome.post.thumbnail_url.endswith(".jpg"))
        self.assertEqual(outcome.post.permalink, post.permalink)

    async def test_rehost_post_partial_failure_keeps_sources(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["url"] == _CDN_IMAGE:
                return httpx.Response(500)
            return httpx.Response(200, content=b"video")

        post = NormalizedPost(
            id="1",
            permalink="https://www.instagram.com/reel/R/",
            media_url=_CDN_VIDEO,
            media_type="video",
            thumbnail_url=_CDN_IMAGE,
        )

        rehoster = _rehoster(handler, self.store)
        outcome = await rehoster.rehost_post(post)

        self.assertTrue(outcome.media.rehosted)
        assert outcome.thumbnail is not None
        self.assertFalse(outcome.thumbnail.rehosted)
        self.assertEqual(outcome.post.thumbnail_url, _CDN_IMAGE)


if __name__ == "__main__":
    unittest.main()
