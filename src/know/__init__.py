"""know: a command-line knowledge base built on Retrieval-Augmented Generation."""

__version__ = "0.1.0"
