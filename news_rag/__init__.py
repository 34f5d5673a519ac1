"""
News RAG

Answers questions about current news by combining semantic retrieval over
news-article embeddings with a generative language model.
"""

__version__ = "0.1.0"
