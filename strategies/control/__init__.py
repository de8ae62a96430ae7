"""Operational control surface (FastAPI) for a running engine."""
