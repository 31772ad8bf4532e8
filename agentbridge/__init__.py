"""agentbridge: drive coding agent CLIs from one interface."""

__version__ = "0.1.0"
