"""Caching and persistence layers."""
