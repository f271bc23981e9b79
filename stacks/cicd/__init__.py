"""Deployment pipeline and CI trust constructs."""
