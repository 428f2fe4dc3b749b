"""Chat gateway: rate-limited front-end for a self-stopping Ollama instance."""

__version__ = "0.1.0"
