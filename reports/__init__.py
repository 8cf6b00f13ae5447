"""reports/ -- Instances, runs and the per-run report tables.

store.py owns all SQL. views.py turns scoped reads into QueryResult payloads.
scope.py keeps the selected (instance, run) pair in the session.

Layer rule: reports/ imports from core/ and cache/ only. api/ and web/
import from reports/, not the other way around.
"""
