"""On-device storage implementations."""
