"""observability/ — structlog setup and logger factory."""
