"""Document ingestion and similarity retrieval for grounding conversational replies."""

__version__ = "0.1.0"
