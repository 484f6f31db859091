"""Release tooling for the VibeBar macOS app."""

__version__ = "0.1.0"
