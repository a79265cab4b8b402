"""
Serving — FastAPI application for ingestion and retrieval.

This module exposes the engine over HTTP for the upload layer, the chat
layer, and operational tooling.
"""
