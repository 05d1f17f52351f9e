"""Worktime engine: tamper-evident clock events, working-time compliance and surcharges."""

__version__ = "1.0.0"
