"""Timed certification practice exams.

The session engine (``session``), countdown helpers (``countdown``), scoring
(``scoring``) and SQLite store (``store``) are usable without pygame; only
``app`` imports it.
"""
