"""Real-time session membership and collaboration engine for mentorship sessions."""

__version__ = "1.0.0"
