"""Real-time chat delivery for embeddable AI chat widgets."""

__version__ = "0.1.0"
