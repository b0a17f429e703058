"""
Services layer.

- core: HTTP base adapter, circuit breakers, rate budget
- sync: normalization, resolution, ingestion and the sync orchestrator
- props: prop derivation, cache and feed
- validation: prediction validation lifecycle
"""
