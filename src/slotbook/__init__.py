"""slotbook: booking pages, working hours and conflict-free slot scheduling."""

__version__ = "0.1.0"
