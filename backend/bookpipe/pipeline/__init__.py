"""Worker-side ingestion driver: the only writer of book processing state."""

from bookpipe.pipeline.orchestrator import BookIngestionOrchestrator, JobOutcome

__all__ = ["BookIngestionOrchestrator", "JobOutcome"]
