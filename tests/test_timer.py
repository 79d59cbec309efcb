"""
Tests for countdown timers, deferred actions and interval jobs.
"""

import threading
import unittest

from fleetsim.timer import DeferredActions, IntervalJob, Timer


class TestTimer(unittest.TestCase):
    """Test Timer class."""

    def test_negative_duration_rejected(self):
        with self.assertRaises(ValueError):
            Timer(-1.0)

    def test_countdown(self):
        timer = Timer(5.0)
        timer._advance(3.0)
        self.assertFalse(timer.done)
        self.assertEqual(timer.duration, 2.0)
        timer._advance(2.0)
        self.assertTrue(timer.done)

    def test_reset(self):
        timer = Timer(1.0)
        timer._advance(1.0)
        timer.reset(4.0)
        self.assertFalse(timer.done)
        self.assertEqual(timer.duration, 4.0)


class TestDeferredActions(unittest.TestCase):
    """Test the deferred-action registry."""

    def setUp(self):
        self.actions = DeferredActions()
        self.fired = []

    def test_fires_once_after_delay(self):
        self.actions.schedule(30.0, lambda: self.fired.append("a"), timer_id="a")
        self.assertEqual(self.actions.advance(29.0), [])
        self.assertEqual(self.actions.remaining("a"), 1.0)
        self.assertEqual(self.actions.advance(1.0), ["a"])
        self.assertEqual(self.actions.advance(100.0), [])
        self.assertEqual(self.fired, ["a"])
        self.assertEqual(len(self.actions), 0)

    def test_generated_ids_are_unique(self):
        first = self.actions.schedule(1.0, lambda: None)
        second = self.actions.schedule(1.0, lambda: None)
        self.assertNotEqual(first, second)
        self.assertCountEqual(self.actions.pending(), [first, second])

    def test_same_id_replaces_pending_timer(self):
        self.actions.schedule(10.0, lambda: self.fired.append("old"), timer_id="mission:d1")
        self.actions.schedule(20.0, lambda: self.fired.append("new"), timer_id="mission:d1")
        self.actions.advance(15.0)
        self.assertEqual(self.fired, [])
        self.actions.advance(5.0)
        self.assertEqual(self.fired, ["new"])

    def test_cancel(self):
        self.actions.schedule(1.0, lambda: self.fired.append("x"), timer_id="x")
        self.assertTrue(self.actions.cancel("x"))
        self.assertFalse(self.actions.cancel("x"))
        self.actions.advance(5.0)
        self.assertEqual(self.fired, [])

    def test_cancel_all(self):
        for index in range(3):
            self.actions.schedule(1.0, lambda: self.fired.append("x"))
        self.assertEqual(self.actions.cancel_all(), 3)
        self.actions.advance(5.0)
        self.assertEqual(self.fired, [])

    def test_failing_action_is_logged(self):
        def boom():
            raise RuntimeError("boom")

        self.actions.schedule(1.0, boom, timer_id="boom")
        self.actions.schedule(1.0, lambda: self.fired.append("ok"), timer_id="ok")
        with self.assertLogs("fleetsim.timer.timer", level="ERROR"):
            fired = self.actions.advance(1.0)
        self.assertEqual(fired, ["boom", "ok"])
        self.assertEqual(self.fired, ["ok"])

    def test_action_may_reschedule(self):
        def again():
            self.fired.append("first")
            self.actions.schedule(1.0, lambda: self.fired.append("second"), timer_id="second")

        self.actions.schedule(1.0, again)
        self.actions.advance(1.0)
        self.actions.advance(1.0)
        self.assertEqual(self.fired, ["first", "second"])


class TestIntervalJob(unittest.TestCase):
    """Test repeating background jobs."""

    def test_invalid_interval(self):
        with self.assertRaises(ValueError):
            IntervalJob(0.0, lambda: None)

    def test_runs_until_cancelled(self):
        ran = threading.Event()
        job = IntervalJob(0.01, ran.set, name="test-job")
        job.start()
        try:
            self.assertTrue(ran.wait(timeout=2.0))
            self.assertTrue(job.running)
        finally:
            job.cancel()
        self.assertFalse(job.running)
        self.assertGreaterEqual(job.runs, 1)

    def test_failure_does_not_stop_job(self):
        calls = []
        second = threading.Event()

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first call fails")
            second.set()

        job = IntervalJob(0.01, flaky)
        with self.assertLogs("fleetsim.timer.interval", level="ERROR"):
            job.start()
            self.assertTrue(second.wait(timeout=2.0))
        job.cancel()


if __name__ == "__main__":
    unittest.main()
