"""Packaged resources (docker compose file for the backing services)."""
