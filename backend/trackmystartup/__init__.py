"""TrackMyStartup application and offer lifecycle service."""

__version__ = "0.1.0"
