"""Conference registration payment reconciliation service."""
