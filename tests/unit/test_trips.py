"""
Trip Segmentation Unit Tests
============================
"""

import pytest

from locotrack.analytics.trips import segment_trips
from locotrack.domain.models import LocationRecord
from locotrack.infrastructure.gps.distance import path_length_meters


def _records(timestamps, step_deg=0.001):
    return [
        LocationRecord(id=i + 1, latitude=41.0 + i * step_deg, longitude=29.0, timestamp_ms=ts)
        for i, ts in enumerate(timestamps)
    ]


class TestSegmentTrips:
    def test_gap_splits_into_two_trips(self):
        points = _records([0, 1000, 2000, 700_000, 701_000])
        trips = segment_trips(points, gap_ms=600_000, min_points=2)

        assert len(trips) == 2
        assert [p.timestamp_ms for p in trips[0].points] == [0, 1000, 2000]
        assert [p.timestamp_ms for p in trips[1].points] == [700_000, 701_000]
        assert trips[0].duration_ms == 2000
        assert trips[1].duration_ms == 1000
        assert trips[0].start_time == 0
        assert trips[0].end_time == 2000

    def test_groups_below_min_points_dropped(self):
        points = _records([0, 900_000])
        assert segment_trips(points, gap_ms=600_000, min_points=2) == []

    def test_gap_equal_to_threshold_splits(self):
        points = _records([0, 1000, 601_000, 602_000])
        trips = segment_trips(points, gap_ms=600_000, min_points=2)
        assert len(trips) == 2

    def test_gap_just_below_threshold_does_not_split(self):
        points = _records([0, 599_999])
        trips = segment_trips(points, gap_ms=600_000, min_points=2)
        assert len(trips) == 1

    def test_empty_input(self):
        assert segment_trips([]) == []

    def test_single_point_trip_only_with_min_points_one(self):
        points = _records([0])
        assert segment_trips(points, min_points=2) == []
        trips = segment_trips(points, min_points=1)
        assert len(trips) == 1
        assert trips[0].duration_ms == 0
        assert trips[0].distance_meters == 0.0

    def test_distance_is_path_length(self):
        points = [
            LocationRecord(id=1, latitude=41.0, longitude=29.0, timestamp_ms=0),
            LocationRecord(id=2, latitude=41.001, longitude=29.0, timestamp_ms=1000),
            LocationRecord(id=3, latitude=41.0, longitude=29.0, timestamp_ms=2000),
        ]
        trip = segment_trips(points)[0]
        assert trip.distance_meters == pytest.approx(path_length_meters(points))
        assert trip.distance_meters > 200

    def test_segmentation_is_deterministic(self):
        points = _records([0, 1000, 2000, 700_000, 701_000, 2_000_000])
        assert segment_trips(points) == segment_trips(points)

    def test_trip_speed(self):
        # 0.01 deg latitude ~ 1.11 km in one hour
        points = _records([0, 3_600_000], step_deg=0.01)
        trip = segment_trips(points, gap_ms=10_000_000)[0]
        assert trip.average_speed_kmh == pytest.approx(1.11, abs=0.01)
        assert trip.point_count == 2
