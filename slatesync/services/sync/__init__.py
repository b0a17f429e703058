"""
Data sync layer.

Key components:
- TemporalNormalizer: one canonical UTC instant per game
- EntityResolver: provider references -> canonical teams and games
- Ingestor: the merge-only write path into the canonical store
- Adapters: one interface per provider category
- Orchestrator: runs the sync steps and keeps sync metadata
"""
