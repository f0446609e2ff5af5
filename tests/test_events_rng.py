from __future__ import annotations

import unittest

from feralsim.events import EventKind, EventQueue, InternalConsistencyError
from feralsim.rng import TRIAL_SEED_STRIDE, ScriptedRNG, SeededRNG, trial_seed, trial_seeds


class EventQueueTests(unittest.TestCase):
    def test_orders_by_time_then_kind_then_insertion(self) -> None:
        queue = EventQueue()
        queue.push(2.0, EventKind.SWING, {"n": 1})
        queue.push(1.0, EventKind.GCD_END)
        queue.push(1.0, EventKind.BUFF_EXPIRE)
        queue.push(1.0, EventKind.PERIODIC_TICK)
        queue.push(2.0, EventKind.SWING, {"n": 2})
        queue.push(2.0, EventKind.ENCOUNTER_END)

        order = []
        while queue:
            event = queue.pop()
            order.append((event.at, event.kind, event.payload.get("n")))

        self.assertEqual(
            order,
            [
                (1.0, EventKind.PERIODIC_TICK, None),
                (1.0, EventKind.BUFF_EXPIRE, None),
                (1.0, EventKind.GCD_END, None),
                (2.0, EventKind.ENCOUNTER_END, None),
                (2.0, EventKind.SWING, 1),
                (2.0, EventKind.SWING, 2),
            ],
        )
        self.assertEqual(queue.last_time, 2.0)

    def test_rejects_events_in_the_past(self) -> None:
        queue = EventQueue()
        queue.push(3.0, EventKind.SWING)
        queue.pop()
        with self.assertRaises(InternalConsistencyError):
            queue.push(1.0, EventKind.SWING)

    def test_pending_and_peek(self) -> None:
        queue = EventQueue()
        self.assertIsNone(queue.peek())
        queue.push(5.0, EventKind.SWING)
        queue.push(4.0, EventKind.RESOURCE_TICK)
        queue.push(6.0, EventKind.SWING)
        self.assertEqual(queue.peek().kind, EventKind.RESOURCE_TICK)
        self.assertEqual([event.at for event in queue.pending(EventKind.SWING)], [5.0, 6.0])
        queue.clear()
        self.assertEqual(len(queue), 0)
        with self.assertRaises(IndexError):
            queue.pop()

    def test_error_payload(self) -> None:
        queue = EventQueue()
        event = queue.push(1.5, EventKind.CAST_COMPLETE)
        error = InternalConsistencyError("energy underflow", at=1.5, event=event)
        self.assertEqual(error.to_dict()["event"], "cast-complete")
        self.assertIn("t=1.500", str(error))


class RNGTests(unittest.TestCase):
    def test_seeded_streams_replay(self) -> None:
        first = SeededRNG(42)
        second = SeededRNG(42)
        self.assertEqual([first.uniform() for _ in range(5)], [second.uniform() for _ in range(5)])
        self.assertEqual(first.draws, 5)

    def test_chance_and_between(self) -> None:
        rng = ScriptedRNG([0.05, 0.5, 0.25])
        self.assertTrue(rng.chance(6.0))
        self.assertFalse(rng.chance(6.0))
        self.assertAlmostEqual(rng.between(10.0, 20.0), 12.5)
        self.assertFalse(rng.chance(0.0))
        self.assertEqual(rng.between(5.0, 5.0), 5.0)

    def test_scripted_rng_cycles_or_exhausts(self) -> None:
        cycling = ScriptedRNG.constant(0.3)
        self.assertEqual([cycling.uniform() for _ in range(3)], [0.3, 0.3, 0.3])
        once = ScriptedRNG([0.1], repeat=False)
        once.uniform()
        with self.assertRaises(IndexError):
            once.uniform()
        with self.assertRaises(ValueError):
            ScriptedRNG([1.0])
        with self.assertRaises(ValueError):
            ScriptedRNG([])

    def test_trial_seeds_are_spread_by_stride(self) -> None:
        self.assertIsNone(trial_seed(None, 3))
        self.assertEqual(trial_seed(7, 2), 7 + 2 * TRIAL_SEED_STRIDE)
        self.assertEqual(list(trial_seeds(1, 3)), [1, 1 + TRIAL_SEED_STRIDE, 1 + 2 * TRIAL_SEED_STRIDE])


if __name__ == "__main__":
    unittest.main()
