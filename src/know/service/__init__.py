"""Backing-service clients and the retrieval, supervision and transfer logic."""
