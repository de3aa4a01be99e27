"""tokenvault - encrypted, signed session tokens with rotating key pairs."""

__version__ = "0.1.0"
