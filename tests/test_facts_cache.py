import threading
import unittest

from cohort_insights.facts_cache import FactsCache
from cohort_insights.mapping.session_facts import build_session_facts, build_session_facts_batch
from cohort_insights.parsing.models import RawSession

from conftest import ScriptedExtractor


def _raw(session_id, reflection="Some reflection text"):
    return RawSession.model_validate(
        {
            "sessionId": session_id,
            "programId": "prog-1",
            "milestones": [{"type": "Reflection", "title": "R", "text": reflection}],
        }
    )


class TestFactsCache(unittest.TestCase):
    def setUp(self):
        self.cache = FactsCache()
        self.extractor = ScriptedExtractor()
        self.raw1 = _raw("s1")
        self.raw2 = _raw("s2")
        self.result1 = build_session_facts(self.raw1, self.extractor)
        self.result2 = build_session_facts(self.raw2, self.extractor)

    def test_put_and_get(self):
        self.assertIsNone(self.cache.get(self.raw1))
        self.cache.put(self.raw1, self.result1)

        self.assertIs(self.cache.get(self.raw1), self.result1)
        self.assertEqual(self.cache.count(), 1)
        self.assertEqual(self.cache.hits, 1)
        self.assertEqual(self.cache.misses, 1)

    def test_changed_session_is_a_miss(self):
        self.cache.put(self.raw1, self.result1)

        edited = _raw("s1", reflection="A different reflection")
        self.assertIsNone(self.cache.get(edited))

    def test_put_replaces_existing_entry(self):
        self.cache.put(self.raw1, self.result1)
        edited = _raw("s1", reflection="A different reflection")
        self.cache.put(edited, self.result2)

        self.assertEqual(self.cache.count(), 1)
        self.assertIs(self.cache.get(edited), self.result2)

    def test_max_entries_evicts_oldest(self):
        cache = FactsCache(max_entries=1)
        cache.put(self.raw1, self.result1)
        cache.put(self.raw2, self.result2)

        self.assertEqual(cache.count(), 1)
        self.assertIsNone(cache.get(self.raw1))
        self.assertIs(cache.get(self.raw2), self.result2)

    def test_zero_max_entries_means_unlimited(self):
        cache = FactsCache(max_entries=0)
        cache.put(self.raw1, self.result1)
        cache.put(self.raw2, self.result2)
        self.assertEqual(cache.count(), 2)

    def test_invalidate_and_clear(self):
        self.cache.put(self.raw1, self.result1)
        self.cache.put(self.raw2, self.result2)

        self.assertIs(self.cache.invalidate("s1"), self.result1)
        self.assertIsNone(self.cache.invalidate("s1"))
        self.assertEqual(self.cache.count(), 1)

        self.cache.clear()
        self.assertEqual(self.cache.count(), 0)

    def test_concurrent_puts(self):
        raws = [_raw(f"c{i}") for i in range(50)]
        results = [build_session_facts(raw, self.extractor) for raw in raws]

        threads = [
            threading.Thread(target=self.cache.put, args=(raw, result))
            for raw, result in zip(raws, results)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(self.cache.count(), 50)

    def test_batch_skips_extractor_for_cached_sessions(self):
        extractor = ScriptedExtractor()
        build_session_facts_batch([self.raw1, self.raw2], extractor, cache=self.cache)
        build_session_facts_batch([self.raw1, self.raw2], extractor, cache=self.cache)

        self.assertEqual(sorted(extractor.calls), ["s1", "s2"])
        self.assertEqual(self.cache.hits, 2)


if __name__ == "__main__":
    unittest.main()
