from entity_resolution.steps.blocking import BlockingEngine, StrategyTable
from entity_resolution.steps.cleanup import FunctionalCleaner
from entity_resolution.steps.clustering import ClusteringEngine
from entity_resolution.steps.comparators import ComparatorTable
from entity_resolution.steps.embedding import HashingTextEmbedder, SbertTextEmbedder
from entity_resolution.steps.scoring import SimilarityEngine

__all__ = [
    "BlockingEngine",
    "StrategyTable",
    "FunctionalCleaner",
    "ClusteringEngine",
    "ComparatorTable",
    "HashingTextEmbedder",
    "SbertTextEmbedder",
    "SimilarityEngine",
]
