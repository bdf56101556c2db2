"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document fetching (web pages, markdown and text files)
- Document chunking with overlap
- FAISS vector indexing
- Conversational retrieval and answer generation
"""
