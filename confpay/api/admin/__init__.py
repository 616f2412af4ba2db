"""Admin API package."""
