"""
Pattern catalog access.

Responsibilities:
- Define the canonical Pattern record shared by every search path.
- Describe the read-only catalog interface the recommender consumes.
- Provide an in-memory catalog and a CSV loader for the bundled sample data.
"""
