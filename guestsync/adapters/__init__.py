from .crm import ApplyTarget, CRMReader, InMemoryCRM, SnapshotApplyTarget
from .source import Extractor, JsonRowsExtractor

__all__ = ["ApplyTarget", "CRMReader", "Extractor", "InMemoryCRM", "JsonRowsExtractor", "SnapshotApplyTarget"]
