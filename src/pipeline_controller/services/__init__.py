"""Reconciliation, promotion strategies and control-plane access."""
