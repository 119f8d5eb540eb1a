"""Request Layer client implementations."""
