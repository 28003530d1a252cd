"""Batch job runners."""
