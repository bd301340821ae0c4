"""imagegate - container image security gate."""

__version__ = "0.1.0"
