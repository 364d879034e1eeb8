import unittest
from datetime import datetime

from equipment_booking import Interval, committed_quantity, has_interval_overlap, peak_committed_quantity


class TestIntervalOverlap(unittest.TestCase):
    def setUp(self) -> None:
        self.exist_start = datetime(2026, 1, 5, 9, 0)
        self.exist_end = datetime(2026, 1, 7, 17, 0)

    def test_range_entirely_before_does_not_overlap(self) -> None:
        self.assertFalse(
            has_interval_overlap(
                datetime(2026, 1, 3, 9, 0),
                datetime(2026, 1, 5, 8, 59),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_range_entirely_after_does_not_overlap(self) -> None:
        self.assertFalse(
            has_interval_overlap(
                datetime(2026, 1, 7, 17, 1),
                datetime(2026, 1, 9, 9, 0),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_range_starting_at_existing_end_overlaps(self) -> None:
        self.assertTrue(
            has_interval_overlap(
                datetime(2026, 1, 7, 17, 0),
                datetime(2026, 1, 8, 9, 0),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_range_ending_at_existing_start_overlaps(self) -> None:
        self.assertTrue(
            has_interval_overlap(
                datetime(2026, 1, 4, 9, 0),
                datetime(2026, 1, 5, 9, 0),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_partially_overlapping_range_overlaps(self) -> None:
        self.assertTrue(
            has_interval_overlap(
                datetime(2026, 1, 6, 9, 0),
                datetime(2026, 1, 8, 9, 0),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_contained_range_overlaps(self) -> None:
        self.assertTrue(
            has_interval_overlap(
                datetime(2026, 1, 6, 10, 0),
                datetime(2026, 1, 6, 11, 0),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_empty_new_range_raises(self) -> None:
        with self.assertRaises(ValueError):
            has_interval_overlap(self.exist_start, self.exist_start, self.exist_start, self.exist_end)

    def test_interval_rejects_reversed_bounds(self) -> None:
        with self.assertRaises(ValueError):
            Interval(self.exist_end, self.exist_start)


class TestCommittedQuantity(unittest.TestCase):
    def test_sums_only_overlapping_quantities(self) -> None:
        existing = [
            (Interval(datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 6, 9, 0)), 2),
            (Interval(datetime(2026, 1, 6, 9, 0), datetime(2026, 1, 7, 9, 0)), 1),
            (Interval(datetime(2026, 1, 10, 9, 0), datetime(2026, 1, 11, 9, 0)), 5),
        ]

        self.assertEqual(committed_quantity(datetime(2026, 1, 6, 9, 0), datetime(2026, 1, 6, 12, 0), existing), 3)
        self.assertEqual(committed_quantity(datetime(2026, 1, 8, 9, 0), datetime(2026, 1, 9, 9, 0), existing), 0)

    def test_peak_counts_touching_intervals_together(self) -> None:
        intervals = [
            (Interval(datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 6, 9, 0)), 1),
            (Interval(datetime(2026, 1, 6, 9, 0), datetime(2026, 1, 7, 9, 0)), 1),
        ]
        self.assertEqual(peak_committed_quantity(intervals), 2)

    def test_peak_of_disjoint_intervals_is_largest_single_quantity(self) -> None:
        intervals = [
            (Interval(datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 5, 10, 0)), 2),
            (Interval(datetime(2026, 1, 5, 11, 0), datetime(2026, 1, 5, 12, 0)), 3),
        ]
        self.assertEqual(peak_committed_quantity(intervals), 3)
        self.assertEqual(peak_committed_quantity([]), 0)


if __name__ == "__main__":
    unittest.main()
