"""Shared FastAPI wiring for the billing routers."""
