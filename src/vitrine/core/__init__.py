"""Core infrastructure: configuration, logging, database, clock."""
