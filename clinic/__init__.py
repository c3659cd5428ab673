"""
Clinic Records

A FastAPI-based clinical records service: account-to-profile linkage,
appointment booking with an explicit status lifecycle, health records
and role-scoped access control.
"""

__version__ = "1.0.0"
