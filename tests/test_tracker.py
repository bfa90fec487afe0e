import threading
import unittest

from anigen.tracker import CostTracker


class CostTrackerTest(unittest.TestCase):
    def test_token_and_image_pricing(self) -> None:
        tracker = CostTracker()
        tracker.add_token_usage(2_000_000, 1_000_000)
        self.assertAlmostEqual(tracker.cost, 0.70 + 0.70)
        tracker.add_image_calls(3)
        self.assertAlmostEqual(tracker.cost, 1.40 + 3 * 0.018)

    def test_progress_counts_steps(self) -> None:
        tracker = CostTracker()
        self.assertEqual(tracker.advance(), 1)
        self.assertEqual(tracker.advance(2), 3)
        self.assertEqual(tracker.steps, 3)

    def test_negative_updates_are_rejected(self) -> None:
        tracker = CostTracker()
        with self.assertRaises(ValueError):
            tracker.add_token_usage(-1, 0)
        with self.assertRaises(ValueError):
            tracker.add_image_calls(-2)
        with self.assertRaises(ValueError):
            tracker.advance(-1)
        self.assertEqual(tracker.cost, 0.0)

    def test_frozen_tracker_refuses_updates(self) -> None:
        tracker = CostTracker()
        tracker.add_image_calls(1)
        tracker.freeze()
        with self.assertRaises(RuntimeError):
            tracker.add_image_calls(1)
        with self.assertRaises(RuntimeError):
            tracker.advance()
        self.assertAlmostEqual(tracker.cost, 0.018)

        tracker.reset()
        self.assertFalse(tracker.frozen)
        self.assertEqual((tracker.cost, tracker.steps), (0.0, 0))

    def test_concurrent_updates_are_not_lost(self) -> None:
        tracker = CostTracker(image_price=1.0)

        def worker() -> None:
            for _ in range(500):
                tracker.add_image_calls(1)
                tracker.advance()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(tracker.steps, 2000)
        self.assertAlmostEqual(tracker.cost, 2000.0)


if __name__ == "__main__":
    unittest.main()
