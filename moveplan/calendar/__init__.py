"""Calendar-facing components: conflicts, timeline reconciliation, event heuristics."""
