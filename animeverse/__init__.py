"""AnimeVerse client: interaction and consistency layer over the content service."""

__version__ = "0.1.0"
