"""Logging, errors and currency helpers."""
