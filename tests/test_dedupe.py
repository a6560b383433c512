from __future__ import annotations

import unittest
from typing import Iterable

from ugc_ingest.dedupe import partition, unique_by_permalink
from ugc_ingest.errors import DedupLookupError
from ugc_ingest.post import NormalizedPost


def _post(n: int) -> NormalizedPost:
    link = f"https://www.instagram.com/p/P{n}/"
    return NormalizedPost(id=str(n), permalink=link, media_url=link)


class _Lookup:
    def __init__(self, known: set[str]) -> None:
        self.known = known
        self.calls: list[list[str]] = []

    def existing_permalinks(self, permalinks: Iterable[str]) -> set[str]:
        batch = list(permalinks)
        self.calls.append(batch)
        return {p for p in batch if p in self.known}


class _BrokenLookup:
    def existing_permalinks(self, permalinks: Iterable[str]) -> set[str]:
        raise OSError("database is locked")


class TestDedupe(unittest.TestCase):
    def test_partition_uses_one_batched_lookup(self) -> None:
        posts = [_post(i) for i in range(5)]
        lookup = _Lookup({posts[1].permalink, posts[3].permalink})

        result = partition(posts, lookup)

        self.assertEqual(len(lookup.calls), 1)
        self.assertEqual(len(lookup.calls[0]), 5)
        self.assertEqual([p.id for p in result.new], ["0", "2", "4"])
        self.assertEqual([p.id for p in result.existing], ["1", "3"])

    def test_in_batch_duplicates_collapse(self) -> None:
        a, b = _post(1), _post(2)
        unique, dropped = unique_by_permalink([a, b, a])
        self.assertEqual(unique, [a, b])
        self.assertEqual(dropped, 1)

        result = partition([a, a, b], _Lookup(set()))
        self.assertEqual(len(result.new), 2)
        self.assertEqual(result.duplicates_in_batch, 1)

    def test_lookup_failure_is_fatal(self) -> None:
        with self.assertRaises(DedupLookupError):
            partition([_post(1)], _BrokenLookup())

    def test_empty_input_skips_lookup(self) -> None:
        lookup = _Lookup(set())
        result = partition([], lookup)
        self.assertEqual(lookup.calls, [])
        self.assertEqual(list(result.new), [])


if __name__ == "__main__":
    unittest.main()
