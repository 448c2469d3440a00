"""Operational alerting."""
