"""Backend for the agent and chatbot configuration dashboard."""

__version__ = "0.3.0"
