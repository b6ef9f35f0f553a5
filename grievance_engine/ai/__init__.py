"""
Grievance Lifecycle Engine
AI module: discipline guidance.

Submodules:
    - gateway: text-generation gateway (provider routing, retry, local stub)
    - reference_retrieval: reference material lookup (BM25 over reference sections)
    - discipline_cache: per-grievance guidance cache with absolute expiry
    - discipline_guidance: cache-first guidance pipeline
"""
