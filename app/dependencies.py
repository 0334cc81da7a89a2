"""Service providers for route dependencies; tests override these."""

from app.services.batch import BatchOrchestrator
from app.services.metadata import MetadataService
from app.services.orchestrator import DownloadOrchestrator
from app.services.progress import ProgressRelay, get_progress_relay


def get_relay() -> ProgressRelay:
    return get_progress_relay()


def get_orchestrator() -> DownloadOrchestrator:
    return DownloadOrchestrator()


def get_batch_orchestrator() -> BatchOrchestrator:
    return BatchOrchestrator(DownloadOrchestrator())


def get_metadata_service() -> MetadataService:
    return MetadataService()
