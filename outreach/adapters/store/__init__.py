"""Entity store adapters for persistence and querying.

Implementations support multiple backends:
- SQLite (zero-config, single-file)
- PostgreSQL (JSONB documents, shared by several processes)
"""
