"""
Location tracking subsystem.

Components:
- models.py: samples, batch results, route summaries
- geodesy.py: haversine distance + bounding boxes
- store.py: SQLite-backed sample storage and queries
- ingest.py: validated single/batch recording
- analytics.py: routes, current locations, statistics
- proximity.py: radius search around a point
"""
