"""Local recording lifecycle log and upload pipeline."""

__version__ = "0.1.0"
