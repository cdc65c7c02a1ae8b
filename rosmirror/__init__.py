"""RouterOS Mirror - local caching update server for RouterOS firmware."""

__version__ = "1.0.0"
