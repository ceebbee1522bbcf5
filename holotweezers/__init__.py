"""Phase hologram generation for holographic optical tweezers."""
__version__ = "0.1.0"
