"""auth/ -- Authentication, session state and route guarding for InsightShield.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, web/, reports/, or cache/.
api/ and web/ import from auth/, not the other way around.
"""
