"""termbridge — shared interactive shell sessions for humans and agents."""

__version__ = "0.1.0"
