"""Application layer: request orchestration."""

from .pipeline import BatchItem, RequestDescriptor, RequestPipeline

__all__ = ["BatchItem", "RequestDescriptor", "RequestPipeline"]
