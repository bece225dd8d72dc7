"""
Feature supplier interface.

The engine never looks at raw text beyond handing it to an extractor; every
layer works on the SemanticFeatures it gets back.
"""

from typing import Protocol, runtime_checkable

from strata.core.types import SemanticFeatures


@runtime_checkable
class FeatureExtractor(Protocol):
    """Protocol for feature suppliers (rule-based, NLP library, remote service)."""

    async def extract(self, text: str) -> SemanticFeatures:
        """Annotate text with tokens, keywords, concepts, sentiment and entities."""
        ...
