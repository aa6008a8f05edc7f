"""Pipeline reconciliation: readiness model, reconciler and controller."""
