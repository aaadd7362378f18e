"""General utilities for isoforge."""
