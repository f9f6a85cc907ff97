"""
Test suite for tablesync.

- Unit tests for the schema engine, registry, configuration and CLI
- Integration tests against a live PostgreSQL server
"""
