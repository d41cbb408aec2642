"""Test package for the certification practice exam.

The engine tests drive sessions with a fake clock and an in-memory SQLite
store. The UI smoke tests run headlessly with pygame's dummy video driver.
Run ``pytest`` from the project root.
"""
