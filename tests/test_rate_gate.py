import unittest

from app.services.rate_gate import RateGate


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class RateGateTests(unittest.TestCase):
    def test_admits_up_to_limit_then_rejects(self):
        clock = _Clock()
        gate = RateGate(2, 60, clock=clock)

        self.assertTrue(gate.try_admit("alice"))
        self.assertTrue(gate.try_admit("alice"))
        self.assertFalse(gate.try_admit("alice"))

    def test_actors_are_throttled_independently(self):
        gate = RateGate(1, 60, clock=_Clock())

        self.assertTrue(gate.try_admit("alice"))
        self.assertFalse(gate.try_admit("alice"))
        self.assertTrue(gate.try_admit("bob"))

    def test_window_rolls_forward(self):
        clock = _Clock()
        gate = RateGate(2, 60, clock=clock)

        gate.try_admit("alice")
        clock.now = 30
        gate.try_admit("alice")
        clock.now = 59
        self.assertFalse(gate.try_admit("alice"))
        self.assertAlmostEqual(gate.retry_after("alice"), 1.0)

        # First admission (t=0) has left the window; the one at t=30 hasn't.
        clock.now = 60
        self.assertTrue(gate.try_admit("alice"))
        self.assertFalse(gate.try_admit("alice"))
        self.assertAlmostEqual(gate.retry_after("alice"), 30.0)

    def test_rejected_attempts_do_not_extend_the_window(self):
        clock = _Clock()
        gate = RateGate(1, 10, clock=clock)

        gate.try_admit("alice")
        for t in range(1, 10):
            clock.now = t
            self.assertFalse(gate.try_admit("alice"))
        clock.now = 10
        self.assertTrue(gate.try_admit("alice"))

    def test_retry_after_is_zero_for_unknown_actor(self):
        gate = RateGate(1, 10, clock=_Clock())
        self.assertEqual(gate.retry_after("nobody"), 0.0)

    def test_reset_clears_state(self):
        gate = RateGate(1, 10, clock=_Clock())
        gate.try_admit("alice")
        gate.reset()
        self.assertTrue(gate.try_admit("alice"))

    def test_rejects_non_positive_limit(self):
        with self.assertRaises(ValueError):
            RateGate(0, 10)


if __name__ == "__main__":
    unittest.main()
