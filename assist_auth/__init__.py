"""Client-side authentication and session continuity for the support assistant."""

__version__ = "1.16.0"
