"""
Feature suppliers.

- base: FeatureExtractor protocol consumed by the engine
- heuristic: word-list/regex extractor used by the CLI
"""

from strata.features.base import FeatureExtractor
from strata.features.heuristic import HeuristicExtractor

__all__ = ["FeatureExtractor", "HeuristicExtractor"]
