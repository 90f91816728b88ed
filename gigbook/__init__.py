"""gigbook: import paid work from Google Calendar as draft income entries."""

__version__ = "0.1.0"
