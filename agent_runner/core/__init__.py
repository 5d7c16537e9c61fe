"""Configuration, persistence and shared utilities."""
