"""Slimage - find heavy remote images and re-encode them in resumable batches."""

__version__ = "0.3.0"
