import threading
import unittest
from dataclasses import replace
from datetime import datetime, timezone

from IG_Reels_Scraper.src.models import CanonicalRecord, Counts, Provenance
from IG_Reels_Scraper.src.scraper_functions.dedup_cache import DedupCache


def record(item_id, likes=0, provenance=Provenance.INTERCEPTED):
    return CanonicalRecord(
        id=item_id,
        provenance=provenance,
        extracted_at=datetime.now(timezone.utc),
        counts=Counts(likes=likes),
    )


class DedupCacheTest(unittest.TestCase):

    def setUp(self):
        self.cache = DedupCache()

    def test_first_write_wins(self):
        first = record("A", likes=1)
        self.assertTrue(self.cache.add_if_absent(first))
        self.assertFalse(self.cache.add_if_absent(replace(first, counts=Counts(likes=99))))
        self.assertEqual(len(self.cache), 1)
        self.assertIs(self.cache.get("A"), first)

    def test_invalid_record_is_refused(self):
        with self.assertRaises(ValueError):
            self.cache.add_if_absent(record(""))
        with self.assertRaises(ValueError):
            self.cache.add_if_absent(None)
        self.assertEqual(len(self.cache), 0)

    def test_all_keeps_arrival_order(self):
        for item_id in ("C", "A", "B"):
            self.cache.add_if_absent(record(item_id))
        self.assertEqual([r.id for r in self.cache.all()], ["C", "A", "B"])
        self.assertIn("A", self.cache)
        self.assertNotIn("Z", self.cache)

    def test_clear(self):
        self.cache.add_if_absent(record("A"))
        self.cache.clear()
        self.assertFalse(self.cache.has("A"))
        self.assertEqual(self.cache.all(), [])

    def test_concurrent_inserts_have_one_winner(self):
        results = []
        barrier = threading.Barrier(8)

        def insert(n):
            barrier.wait()
            results.append(self.cache.add_if_absent(record("SAME", likes=n)))

        threads = [threading.Thread(target=insert, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(results.count(True), 1)
        self.assertEqual(len(self.cache), 1)


if __name__ == '__main__':
    unittest.main()
