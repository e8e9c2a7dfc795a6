import asyncio
import time
import unittest


from app.core.errors import PoolExhausted
from app.services.browser_pool import BrowserPool
from fakes import FakeLauncher


class SlowLauncher(FakeLauncher):
    def __init__(self, delay_s, fail=False):
        super().__init__()
        self.delay_s = delay_s
        self.fail = fail

    async def __call__(self):
        await asyncio.sleep(self.delay_s)
        if self.fail:
            raise RuntimeError("browser failed to launch")
        return await super().__call__()


def _pool(launcher, **overrides):
    opts = dict(
        max_sessions=2,
        idle_timeout_s=300,
        sweep_interval_s=3600,
        acquire_timeout_s=0.2,
        poll_interval_s=0.01,
        headless=True,
        launcher=launcher,
    )
    opts.update(overrides)
    return BrowserPool(**opts)


class TestBrowserPool(unittest.IsolatedAsyncioTestCase):
    async def test_launches_lazily_up_to_max(self):
        launcher = FakeLauncher()
        pool = _pool(launcher)
        self.assertEqual(pool.status()["total"], 0)

        a = await pool.acquire("a")
        b = await pool.acquire("b")
        self.assertNotEqual(a.index, b.index)
        self.assertEqual(len(launcher.browsers), 2)
        self.assertEqual(pool.status(), {"total": 2, "in_use": 2, "idle": 0, "max_sessions": 2})
        await pool.close_all()

    async def test_affinity_preferred(self):
        pool = _pool(FakeLauncher())
        a = await pool.acquire("a")
        b = await pool.acquire("b")
        pool.release(a)
        pool.release(b)

        again = await pool.acquire("b")
        self.assertIs(again, b)
        other = await pool.acquire("c")
        self.assertIs(other, a)
        self.assertEqual(other.affinity_key, "c")
        await pool.close_all()

    async def test_idle_reused_before_launch(self):
        launcher = FakeLauncher()
        pool = _pool(launcher)
        s = await pool.acquire()
        pool.release(s)
        self.assertIs(await pool.acquire("x"), s)
        self.assertEqual(len(launcher.browsers), 1)
        await pool.close_all()

    async def test_exhausted_after_timeout(self):
        pool = _pool(FakeLauncher(), max_sessions=1, acquire_timeout_s=0.05)
        await pool.acquire("a")
        with self.assertRaises(PoolExhausted):
            await pool.acquire("b")
        await pool.close_all()

    async def test_waiter_gets_released_session(self):
        pool = _pool(FakeLauncher(), max_sessions=1, acquire_timeout_s=1.0)
        held = await pool.acquire("a")

        async def release_later():
            await asyncio.sleep(0.05)
            pool.release(held)

        task = asyncio.create_task(release_later())
        got = await pool.acquire("b")
        await task
        self.assertIs(got, held)
        self.assertTrue(got.in_use)
        await pool.close_all()

    async def test_slow_launch_does_not_stretch_other_waits(self):
        pool = _pool(SlowLauncher(1.0), max_sessions=1, acquire_timeout_s=0.2)
        first = asyncio.create_task(pool.acquire("a"))
        await asyncio.sleep(0.02)
        self.assertEqual(pool.status()["in_use"], 1)

        started = time.monotonic()
        with self.assertRaises(PoolExhausted):
            await pool.acquire("b")
        self.assertLess(time.monotonic() - started, 0.5)

        session = await first
        self.assertIsNotNone(session.browser)
        self.assertEqual(session.affinity_key, "a")
        await pool.close_all()

    async def test_parallel_launches_overlap(self):
        launcher = SlowLauncher(0.3)
        pool = _pool(launcher, max_sessions=2, acquire_timeout_s=1.0)
        started = time.monotonic()
        a, b = await asyncio.gather(pool.acquire("a"), pool.acquire("b"))
        self.assertLess(time.monotonic() - started, 0.55)
        self.assertNotEqual(a.index, b.index)
        self.assertEqual(len(launcher.browsers), 2)
        await pool.close_all()

    async def test_failed_launch_frees_reserved_slot(self):
        pool = _pool(SlowLauncher(0.01, fail=True), max_sessions=1)
        with self.assertRaises(RuntimeError):
            await pool.acquire("a")
        self.assertEqual(pool.status()["total"], 0)
        pool._launcher = FakeLauncher()
        self.assertIsNotNone((await pool.acquire("a")).browser)
        await pool.close_all()

    async def test_session_context_releases_on_error(self):
        pool = _pool(FakeLauncher(), max_sessions=1)
        with self.assertRaises(ValueError):
            async with pool.session("a") as s:
                self.assertTrue(s.in_use)
                raise ValueError("boom")
        self.assertEqual(pool.status()["in_use"], 0)
        await pool.close_all()

    async def test_new_page_reuses_context(self):
        launcher = FakeLauncher()
        pool = _pool(launcher)
        s = await pool.acquire()
        await s.new_page()
        await s.new_page()
        self.assertEqual(len(launcher.browsers[0].contexts), 1)
        self.assertEqual(len(launcher.browsers[0].contexts[0].pages), 2)
        await pool.close_all()

    async def test_sweep_keeps_one_and_evicts_highest_index(self):
        launcher = FakeLauncher()
        pool = _pool(launcher, max_sessions=3, idle_timeout_s=0)
        sessions = [await pool.acquire(str(i)) for i in range(3)]
        for s in sessions:
            pool.release(s)

        evicted = await pool.sweep_idle()
        self.assertEqual(evicted, 2)
        self.assertEqual(pool.status()["total"], 1)
        self.assertFalse(launcher.browsers[0].closed)
        self.assertTrue(launcher.browsers[1].closed)
        self.assertTrue(launcher.browsers[2].closed)
        await pool.close_all()

    async def test_sweep_skips_busy_sessions(self):
        pool = _pool(FakeLauncher(), idle_timeout_s=0)
        busy = await pool.acquire("a")
        idle = await pool.acquire("b")
        pool.release(idle)
        self.assertEqual(await pool.sweep_idle(), 1)
        self.assertEqual(pool.status()["total"], 1)
        self.assertTrue(busy.in_use)
        await pool.close_all()

    async def test_close_all(self):
        launcher = FakeLauncher()
        pool = _pool(launcher)
        await pool.start()
        s = await pool.acquire()
        await s.new_page()
        await pool.close_all()
        self.assertTrue(launcher.browsers[0].closed)
        self.assertTrue(launcher.browsers[0].contexts[0].closed)
        self.assertEqual(pool.status()["total"], 0)
        with self.assertRaises(PoolExhausted):
            await pool.acquire()
        await pool.close_all()


if __name__ == "__main__":
    unittest.main()
