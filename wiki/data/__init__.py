"""
Wiki data layer (Postgres).

Pages, tags and users live in Postgres; the schema is managed by the SQL files
under `migrations/`.
"""
