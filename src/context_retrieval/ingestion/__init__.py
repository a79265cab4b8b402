"""
Ingestion — chunking, embedding, and the document lifecycle.

This module turns uploaded document text into embedded chunks stored in
the vector store, driving each document through
``uploaded → processing → processed | error``.
"""
