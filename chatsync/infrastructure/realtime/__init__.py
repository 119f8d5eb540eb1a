"""Update Source implementations (push stream and interval polling)."""
