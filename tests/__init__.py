"""
addonhost test suite.

Every test runs against its own temporary live tree (see conftest.py).
"""
