"""Infrastructure services shared across the application."""
