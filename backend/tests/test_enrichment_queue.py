import unittest


from app.models.channel import EnrichmentStatus
from app.models.enrichment_job import EnrichmentJob, JobStatus
from app.services import store
from app.services.browser_pool import BrowserPool
from app.services.enrichment import SOURCE_SELF_ABOUT, SOURCE_WEBSITE, EnrichmentFacts
from app.services.enrichment_queue import EnrichmentQueue
from fakes import FakeLauncher, make_session_factory


class FlakyOrchestrator:
    """Fails the first ``failures`` calls, then returns ``facts``."""

    def __init__(self, failures=0, facts=None):
        self.failures = failures
        self.facts = facts or EnrichmentFacts()
        self.calls = []

    async def enrich(self, page, channel_url, social_links=None, known_sources=None):
        self.calls.append((channel_url, dict(social_links or {}), dict(known_sources or {})))
        if len(self.calls) <= self.failures:
            raise TimeoutError("Timeout 15000ms exceeded")
        return self.facts


def _facts():
    return EnrichmentFacts(
        subscriber_count=250_000,
        country="Canada",
        email_sources={"old@chef.com": SOURCE_WEBSITE, "new@chef.com": SOURCE_WEBSITE},
        social_links={"website": "https://chef.com", "instagram": "https://www.instagram.com/chef"},
    )


class TestEnrichmentQueue(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.Session = make_session_factory()
        self.launcher = FakeLauncher()
        self.pool = BrowserPool(max_sessions=1, acquire_timeout_s=1, poll_interval_s=0.01, launcher=self.launcher)
        db = self.Session()
        try:
            store.upsert_channel(
                db,
                {
                    "channel_id": "UC1",
                    "name": "Chef",
                    "url": "https://www.youtube.com/@chef",
                    "social_links": {"twitter": "https://twitter.com/chef"},
                },
                keyword="cooking",
            )
            channel = store.get_channel(db, "UC1")
            channel.email_sources = {"old@chef.com": SOURCE_SELF_ABOUT}
            channel.emails = ["old@chef.com"]
            db.commit()
        finally:
            db.close()

    async def asyncTearDown(self):
        await self.pool.close_all()

    def _queue(self, orchestrator, max_attempts=3):
        return EnrichmentQueue(self.Session, self.pool, orchestrator, max_attempts=max_attempts)

    def _job(self, channel_id="UC1"):
        db = self.Session()
        try:
            return db.query(EnrichmentJob).filter(EnrichmentJob.channel_id == channel_id).order_by(EnrichmentJob.id.desc()).first()
        finally:
            db.close()

    def _channel(self, channel_id="UC1"):
        db = self.Session()
        try:
            return store.get_channel(db, channel_id)
        finally:
            db.close()

    async def test_duplicate_enqueue_is_noop(self):
        queue = self._queue(FlakyOrchestrator())
        self.assertTrue(queue.enqueue("UC1"))
        self.assertFalse(queue.enqueue("UC1"))
        self.assertEqual(queue.enqueue_many(["UC1", "UC2", ""]), 1)
        self.assertEqual(queue.stats()["pending"], 2)

    async def test_claim_prefers_priority(self):
        queue = self._queue(FlakyOrchestrator())
        queue.enqueue("UC_low", priority=0)
        queue.enqueue("UC_high", priority=5)
        job = queue.claim_next()
        self.assertEqual(job.channel_id, "UC_high")
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertEqual(job.attempts, 1)
        self.assertIsNotNone(job.started_at)
        self.assertEqual(queue.claim_next().channel_id, "UC_low")
        self.assertIsNone(queue.claim_next())

    async def test_fails_twice_then_succeeds(self):
        orchestrator = FlakyOrchestrator(failures=2, facts=_facts())
        queue = self._queue(orchestrator)
        queue.enqueue("UC1")

        self.assertEqual(await queue.drain(max_jobs=1, pause_s=0), 1)
        job = self._job()
        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual(job.attempts, 1)
        self.assertIn("TimeoutError", job.error_message)
        self.assertEqual(self._channel().enrichment_status, EnrichmentStatus.PENDING)

        await queue.drain(max_jobs=1, pause_s=0)
        self.assertEqual(self._job().attempts, 2)

        await queue.drain(max_jobs=1, pause_s=0)
        job = self._job()
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertEqual(job.attempts, 3)
        self.assertIsNotNone(job.completed_at)

        channel = self._channel()
        self.assertEqual(channel.enrichment_status, EnrichmentStatus.ENRICHED)
        self.assertIsNotNone(channel.enriched_at)
        # Existing attribution survives, new email is appended
        self.assertEqual(channel.email_sources, {"old@chef.com": SOURCE_SELF_ABOUT, "new@chef.com": SOURCE_WEBSITE})
        self.assertEqual(channel.emails, ["old@chef.com", "new@chef.com"])
        self.assertEqual(channel.social_links["twitter"], "https://twitter.com/chef")
        self.assertEqual(channel.social_links["website"], "https://chef.com")
        self.assertEqual(channel.subscriber_count, 250_000)
        self.assertEqual(channel.country, "Canada")

        url, links, known = orchestrator.calls[-1]
        self.assertEqual(url, "https://www.youtube.com/@chef")
        self.assertEqual(links, {"twitter": "https://twitter.com/chef"})
        self.assertEqual(known, {"old@chef.com": SOURCE_SELF_ABOUT})
        self.assertEqual(self.pool.status()["in_use"], 0)

    async def test_retry_bound(self):
        orchestrator = FlakyOrchestrator(failures=100)
        queue = self._queue(orchestrator, max_attempts=3)
        queue.enqueue("UC1")

        processed = await queue.drain(max_jobs=10, pause_s=0)
        self.assertEqual(processed, 4)
        self.assertEqual(len(orchestrator.calls), 4)
        job = self._job()
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.attempts, 4)
        self.assertEqual(self._channel().enrichment_status, EnrichmentStatus.FAILED)
        self.assertEqual(await queue.drain(max_jobs=10, pause_s=0), 0)
        self.assertEqual(queue.stats()["failed"], 1)

        # A terminal job no longer blocks a fresh enqueue
        self.assertTrue(queue.enqueue("UC1"))

    async def test_restart_requeues_claimed_job(self):
        self._queue(FlakyOrchestrator()).enqueue("UC1")
        claimed = self._queue(FlakyOrchestrator()).claim_next()
        self.assertEqual(claimed.status, JobStatus.PROCESSING)

        orchestrator = FlakyOrchestrator(facts=_facts())
        restarted = self._queue(orchestrator)
        self.assertEqual(restarted.recover_interrupted(), (1, 0))
        job = self._job()
        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual(job.error_message, "interrupted")
        self.assertEqual(self._channel().enrichment_status, EnrichmentStatus.PENDING)
        self.assertFalse(restarted.enqueue("UC1"))

        self.assertEqual(await restarted.drain(max_jobs=1, pause_s=0), 1)
        job = self._job()
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertEqual(job.attempts, 2)
        self.assertEqual(self._channel().enrichment_status, EnrichmentStatus.ENRICHED)

    async def test_restart_fails_job_past_its_attempts(self):
        queue = self._queue(FlakyOrchestrator(), max_attempts=1)
        queue.enqueue("UC1")
        queue.claim_next()
        db = self.Session()
        try:
            row = db.query(EnrichmentJob).filter(EnrichmentJob.channel_id == "UC1").first()
            store.update_job(db, row, attempts=2)
            store.update_channel(db, "UC1", enrichment_status=EnrichmentStatus.ENRICHING)
        finally:
            db.close()

        self.assertEqual(self._queue(FlakyOrchestrator(), max_attempts=1).recover_interrupted(), (0, 1))
        job = self._job()
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertIsNotNone(job.completed_at)
        self.assertEqual(self._channel().enrichment_status, EnrichmentStatus.FAILED)
        self.assertTrue(queue.enqueue("UC1"))

    async def test_recover_without_stale_jobs(self):
        queue = self._queue(FlakyOrchestrator())
        queue.enqueue("UC1")
        self.assertEqual(queue.recover_interrupted(), (0, 0))
        self.assertEqual(self._job().status, JobStatus.PENDING)

    async def test_missing_channel_fails_job(self):
        orchestrator = FlakyOrchestrator()
        queue = self._queue(orchestrator, max_attempts=1)
        queue.enqueue("UC_gone")
        self.assertEqual(await queue.drain(max_jobs=5, pause_s=0), 2)
        self.assertEqual(self._job("UC_gone").status, JobStatus.FAILED)
        self.assertIn("ChannelNotFound", self._job("UC_gone").error_message)
        self.assertEqual(orchestrator.calls, [])

    async def test_enrichment_status_snapshot(self):
        queue = self._queue(FlakyOrchestrator(facts=_facts()))
        queue.enqueue("UC1")
        await queue.drain(max_jobs=1, pause_s=0)
        out = queue.enrichment_status(["UC1", "UC_unknown", ""])
        self.assertEqual(set(out), {"UC1", "UC_unknown"})
        self.assertEqual(out["UC_unknown"], {"status": "unknown"})
        self.assertEqual(out["UC1"]["status"], "enriched")
        self.assertEqual(out["UC1"]["job_status"], "completed")
        self.assertEqual(out["UC1"]["attempts"], 1)
        self.assertIn("new@chef.com", out["UC1"]["emails"])


if __name__ == "__main__":
    unittest.main()
