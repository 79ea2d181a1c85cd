"""babyfoon - live audio baby monitor."""

__version__ = "0.1.0"
