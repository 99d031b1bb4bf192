"""
Core modules for Billing Query.

This package contains request parsing, authentication, the query service
and response shaping.
"""
