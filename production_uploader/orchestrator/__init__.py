"""Orchestrator package - task state machine, cancellation and the upload queue."""
from .cancellation import CancellationController
from .task import UploadTask
from .queue import UploadQueue

__all__ = ["CancellationController", "UploadTask", "UploadQueue"]
