"""Adapters for the hosted backend's data API and change stream."""
