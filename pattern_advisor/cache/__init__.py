"""
Cache layer shared by the embedding selector and the recommender.

Responsibilities:
- Bound memoized values by entry count and time-to-live.
- Evict the least recently used entry when full.
- Count hits, misses and evictions for the stats endpoint.
"""
