"""Application use cases for production upload workflows."""

from .upload_attempt import AttemptOutcome, UploadAttemptUseCase

__all__ = [
    "AttemptOutcome",
    "UploadAttemptUseCase",
]
