"""filegate - record-gated file download gateway."""

__version__ = "1.0.0"
