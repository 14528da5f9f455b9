"""Retrieval package.

Architectural role:
    Provides the topic-scoped passage search consumed by topic answer stages.

Scope:
    - `retriever`: `Retriever` protocol and context assembly.
    - `product_index`: chunking plus FAISS indexes over product documentation.
    - `embedding_model`: shared sentence-transformers model loader.
"""
