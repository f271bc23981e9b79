"""Shared helpers for the services stacks."""
