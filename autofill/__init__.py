"""Client for asynchronous fill-template document generation jobs."""

__version__ = "0.1.0"
