"""PicoLM Gateway — OpenAI-compatible HTTP API over a command-line inference engine."""

__version__ = "0.1.0"
