"""
Strata - bounded three-layer memory store.

Package structure:
- core: Config, shared types, errors, scheduler, logging
- features: Feature extractor protocol and heuristic implementation
- memory: Context index, concept graph, temporal index, engine, snapshots
- service: Engine wiring for the CLI
"""

__version__ = "0.1.0"
