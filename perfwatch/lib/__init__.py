"""Shared infrastructure: configuration, database, errors, logging, instrumentation."""
