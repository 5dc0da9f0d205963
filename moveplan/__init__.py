"""Movement scheduling and reconciliation engine."""
