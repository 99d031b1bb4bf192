"""
Billing Query.

Billing and usage-accounting queries for tenants of a multi-tenant platform.
"""

__version__ = "0.1.0"
