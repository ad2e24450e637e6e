"""Availability, conflict filtering, slot generation and booking admission."""
