"""API package - FastAPI routers."""
