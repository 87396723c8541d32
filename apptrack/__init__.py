"""apptrack: application event deduplication and submission scheduling."""

__version__ = "0.1.0"
