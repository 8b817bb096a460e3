"""
Hybrid design-pattern recommendation engine.

Responsibilities:
- Validate recommendation and search requests.
- Run semantic and keyword scoring concurrently over the catalog.
- Merge both signals into final scores and confidences, then rank deterministically.
- Attach justifications and alternatives to each recommendation.
"""
