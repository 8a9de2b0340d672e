"""Use cases for the media normalization service."""

from .dispatch_batch import DispatchBatchUseCase
from .normalize_media import NormalizeMediaUseCase, PipelineStage

__all__ = [
    "DispatchBatchUseCase",
    "NormalizeMediaUseCase",
    "PipelineStage",
]
