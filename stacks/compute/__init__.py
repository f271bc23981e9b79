"""Compute fleet and traffic routing constructs."""
