"""Core controller building blocks."""
