"""Utility modules for common operations.

This package provides reusable utilities for:
- Backoff strategies for polling loops
"""
