"""Gelbooru source adapter: rate-limited fetching, discovery and normalization."""
