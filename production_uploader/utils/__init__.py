"""Small shared helpers."""
from .events import EventEmitter, ProgressReporter

__all__ = ["EventEmitter", "ProgressReporter"]
