"""
Embeddings layer for semantic search.

Responsibilities:
- Pick one embedding provider from a fixed priority list (local model, OpenAI, hashing).
- Batch, retry and time out provider calls; cache vectors per text and model.
- Persist pattern embeddings with the provider identity that produced them.
- Precompute embeddings for the whole catalog offline.
"""
