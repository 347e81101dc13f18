#!/usr/bin/env python3
"""Seed the database with GPS test fixture data for development and web UI testing.

Usage:
    python seed_test_data.py

This inserts the 22-point, two-day La Réunion hiking trace and prints the
resulting statistics, so /parcours and /api/parcours.png have something to show.
"""

from database import init_db, SessionLocal
from models import Location
from stats import aggregate, get_stats_settings
from store import load_ordered
from tests.gps_test_fixtures import GPS_TRACE


def seed():
    init_db()
    db = SessionLocal()

    existing = db.query(Location).count()
    if existing:
        print(f"Database already holds {existing} locations. Skipping seed.")
        db.close()
        return

    # Insert GPS trace
    for pt in GPS_TRACE:
        loc = Location(
            latitude=pt["latitude"],
            longitude=pt["longitude"],
            altitude=pt.get("altitude"),
            horizontal_accuracy=pt.get("horizontal_accuracy"),
            speed=pt.get("speed"),
            timestamp=pt["timestamp"],
        )
        db.add(loc)
    db.commit()
    print(f"Inserted {len(GPS_TRACE)} location points")

    result = aggregate(load_ordered(db), get_stats_settings(db))
    totals = result["totals"]
    print(f"Total: {totals['km']} km, +{totals['elevation_gain']} m, "
          f"{totals['moving_seconds'] // 60} min moving")
    for day in result["per_day"]:
        print(f"  - {day['date']}: {day['km']} km over {day['seconds'] // 60}m "
              f"({day['points']} legs)")

    db.close()
    print("\nDone! Open /parcours to see the map")


if __name__ == "__main__":
    seed()
