"""Clients for the systems the controller talks to."""
