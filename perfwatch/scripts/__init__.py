"""Operational jobs for perfwatch."""
