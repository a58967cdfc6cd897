"""Shared real-time space with proximity voice."""
