"""Mirror Gelbooru favorites and their tags into a Szurubooru instance."""

__version__ = "0.1.0"
