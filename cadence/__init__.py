"""Cadence — in-process recurring task scheduler."""
