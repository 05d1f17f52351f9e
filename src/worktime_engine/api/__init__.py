"""HTTP API for the worktime engine."""
