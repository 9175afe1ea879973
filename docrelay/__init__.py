"""Real-time full-state document synchronization relay."""

__version__ = "0.1.0"
