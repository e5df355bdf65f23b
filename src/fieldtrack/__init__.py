"""
fieldtrack: field-worker assignment lifecycle and location tracking.

Subpackages:
- assignments: task/user directory, assignment store, computed status
- tracking: location ingestion, route analytics, proximity search
- sampler: device-side periodic location sampler
- cli: console REPL and composition root
"""
