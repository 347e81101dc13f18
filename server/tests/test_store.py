"""Tests for sample loading and window downsampling."""

from models import Location
from store import clean_points, downsample, load_last, load_ordered
from tests.fakes import add_trace
from tests.gps_test_fixtures import GPS_TRACE


class TestLoadOrdered:
    def test_empty_store(self, db):
        assert load_ordered(db) == []
        assert load_last(db) is None

    def test_returns_ascending_timestamps(self, db):
        add_trace(db, list(reversed(GPS_TRACE)))
        points = load_ordered(db)
        timestamps = [pt["timestamp"] for pt in points]
        assert timestamps == sorted(timestamps)
        assert len(points) == len(GPS_TRACE)

    def test_bounds_are_inclusive(self, populated_db):
        first = GPS_TRACE[0]["timestamp"]
        third = GPS_TRACE[2]["timestamp"]
        points = load_ordered(populated_db, first, third)
        assert [pt["timestamp"] for pt in points] == [pt["timestamp"] for pt in GPS_TRACE[:3]]

    def test_open_ended_bounds(self, populated_db):
        cutoff = GPS_TRACE[-3]["timestamp"]
        assert len(load_ordered(populated_db, from_ts=cutoff)) == 3
        assert len(load_ordered(populated_db, to_ts=cutoff)) == len(GPS_TRACE) - 2

    def test_point_fields(self, populated_db):
        pt = load_ordered(populated_db)[0]
        assert pt == {
            "latitude": GPS_TRACE[0]["latitude"],
            "longitude": GPS_TRACE[0]["longitude"],
            "timestamp": GPS_TRACE[0]["timestamp"],
            "altitude": GPS_TRACE[0]["altitude"],
            "horizontal_accuracy": GPS_TRACE[0]["horizontal_accuracy"],
            "speed": GPS_TRACE[0]["speed"],
        }


class TestLoadLast:
    def test_newest_sample_with_place_fields(self, populated_db):
        populated_db.add(Location(
            latitude=-21.3393, longitude=55.4781, timestamp=GPS_TRACE[-1]["timestamp"] + 60,
            city="Saint-Pierre", timezone="Indian/Reunion",
        ))
        populated_db.commit()
        last = load_last(populated_db)
        assert last["city"] == "Saint-Pierre"
        assert last["timezone"] == "Indian/Reunion"
        assert last["address"] is None
        assert last["id"] is not None


class TestDownsample:
    def test_stride_one_keeps_everything(self):
        points = list(range(5))
        assert downsample(points, 1) == points

    def test_last_point_always_kept(self):
        points = list(range(101))
        kept = downsample(points, 7)
        assert kept[0] == 0
        assert kept[-1] == 100
        assert kept[:-1] == list(range(0, 101, 7))

    def test_no_duplicate_when_last_is_on_stride(self):
        points = list(range(101))
        assert downsample(points, 10) == list(range(0, 101, 10))

    def test_degenerate_inputs(self):
        assert downsample([], 5) == []
        assert downsample([1], 5) == [1]
        assert downsample([1, 2, 3], 0) == [1, 2, 3]


class TestCleanPoints:
    def test_drops_unusable_samples(self):
        points = [
            {"latitude": -21.0, "longitude": 55.5, "timestamp": 10},
            {"latitude": None, "longitude": 55.5, "timestamp": 20},
            {"latitude": -21.0, "longitude": float("nan"), "timestamp": 30},
            {"latitude": "-21.1", "longitude": "55.6", "timestamp": "40"},
        ]
        clean = clean_points(points)
        assert [pt["timestamp"] for pt in clean] == [10.0, 40.0]
        assert clean[1]["latitude"] == -21.1
