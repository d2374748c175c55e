"""Access control: permission resolution, ownership and transition authorization."""
