"""Feed harvesting pipeline: crawl, ingest, and publish short-form videos."""

from .classifier import MediaType, UrlClass, classify_url
from .ingest import FeedIngestionPipeline, IngestResult

__all__ = ["FeedIngestionPipeline", "IngestResult", "MediaType", "UrlClass", "classify_url"]
