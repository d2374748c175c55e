"""Runtime configuration and observability setup."""
