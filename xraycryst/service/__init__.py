"""HTTP service exposing the analysis ledger (FastAPI)."""
