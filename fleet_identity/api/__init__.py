"""HTTP blueprints for the reconciliation service."""
