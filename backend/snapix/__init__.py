"""Snapix backend: Facebook campaign sync, caching and dashboard API."""
