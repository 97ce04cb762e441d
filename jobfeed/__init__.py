"""Unified job feed: API and vendor-email jobs, merged, deduplicated and scored."""

__version__ = "0.1.0"
