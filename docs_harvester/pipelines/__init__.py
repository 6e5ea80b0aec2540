"""Streaming documentation pipeline.

Scrapers - Turn websites, GitHub repositories and local files into fragments
Ingestion - Buffers fragments and stores them in the vector index in batches
Manager - Per-source fragment cache, diagnostics and queries
"""
