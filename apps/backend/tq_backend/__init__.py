"""tq_backend - Sync & reconciliation engine and HTTP API for TriageQueue."""
