"""
Candidate scoring engines.

Responsibilities:
- Score stored pattern embeddings against a query vector (cosine similarity).
- Score pattern text fields against query terms (weighted keyword overlap).
- Order candidates deterministically, breaking ties by pattern id.
"""
