from unittest import TestCase

from .models import PositionState
from .positions import PositionTracker

NV = PositionState.NOT_VISITED
SK = PositionState.SKIPPED
OK = PositionState.CORRECT


class PositionTrackerTests(TestCase):
    def test_fresh_tracker(self):
        tracker = PositionTracker.fresh(3)

        self.assertEqual(tracker.states, [NV, NV, NV])
        self.assertTrue(tracker.has_remaining())
        self.assertFalse(tracker.all_correct())
        self.assertEqual(tracker.unfound_positions(), [1, 2, 3])

    def test_transitions(self):
        tracker = PositionTracker.fresh(3)

        self.assertTrue(tracker.mark_skipped(1))
        tracker.mark_correct(1)
        tracker.mark_correct(2)

        self.assertEqual(tracker.states, [OK, OK, NV])
        self.assertEqual(tracker.correct_positions(), [1, 2])

    def test_correct_is_absorbing(self):
        tracker = PositionTracker.fresh(2)
        tracker.mark_correct(1)

        self.assertFalse(tracker.mark_skipped(1))
        with self.assertRaises(ValueError):
            tracker.mark_correct(1)
        self.assertEqual(tracker.state(1), OK)

    def test_mutates_wrapped_list(self):
        states = [NV, NV]
        PositionTracker(states).mark_skipped(2)

        self.assertEqual(states, [NV, SK])

    def test_out_of_range(self):
        tracker = PositionTracker.fresh(2)

        self.assertFalse(tracker.exists(0))
        self.assertFalse(tracker.exists(3))
        with self.assertRaises(IndexError):
            tracker.state(3)

    def test_next_prefers_unvisited_above(self):
        tracker = PositionTracker([SK, NV, SK, NV])

        self.assertEqual(tracker.next_navigable_after(2), 4)

    def test_next_wraps_to_lowest_skipped_below(self):
        tracker = PositionTracker([OK, SK, SK, SK])

        self.assertEqual(tracker.next_navigable_after(4), 2)

    def test_next_falls_back_to_any_unsolved(self):
        tracker = PositionTracker([NV, OK, SK])

        self.assertEqual(tracker.next_navigable_after(3), 1)
        self.assertEqual(PositionTracker([OK, SK, SK]).next_navigable_after(2), 3)

    def test_next_none_when_only_current_left(self):
        self.assertIsNone(PositionTracker([OK, SK, OK]).next_navigable_after(2))
        self.assertIsNone(PositionTracker([OK, OK]).next_navigable_after(2))

    def test_all_correct(self):
        tracker = PositionTracker([OK, OK])

        self.assertTrue(tracker.all_correct())
        self.assertFalse(tracker.has_remaining())
        self.assertFalse(PositionTracker([]).all_correct())
