"""HTTP surface of the wiki (FastAPI)."""
