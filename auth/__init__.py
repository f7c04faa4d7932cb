"""auth/ -- Authentication and authorization package for AuditDesk.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or audit/.
api/ imports from auth/, not the other way around.
"""
