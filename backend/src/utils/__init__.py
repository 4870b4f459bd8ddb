"""
Utility modules for the hospital backend.

This package contains shared helpers used across the services, including
datetime utilities, appointment queries and schedule locks.
"""
