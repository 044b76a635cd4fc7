"""Implementations behind the `buildcache` commands."""
