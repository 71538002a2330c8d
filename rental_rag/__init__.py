"""
Rental RAG
Semantic index and grounded chat assistant for multi-tenant car rental operations.
Built with Voyage AI embeddings, Pinecone, and Claude.
"""

__version__ = "1.0.0"
