"""HTTP surface of the smart payment engine (FastAPI)."""
