"""IT-operations desk backend: ticket lifecycle and verification engine."""
