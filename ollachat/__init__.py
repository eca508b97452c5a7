"""ollachat: streaming chat service in front of a local Ollama runtime."""

__version__ = "0.1.0"
