"""audit/ -- Audit workflow domain for AuditDesk.

Layer rule: audit/ imports stdlib, third-party libraries, core/, and the
users table from auth/store.py (for joins and foreign keys). It does NOT
import from api/.
"""
