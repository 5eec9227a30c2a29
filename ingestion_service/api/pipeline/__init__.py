"""Ordered request-processing pipeline."""

from .stages import (
    ORDER_CONSTRAINTS,
    PIPELINE,
    PipelineStage,
    build_pipeline,
    validate_pipeline,
)

__all__ = [
    "PIPELINE",
    "ORDER_CONSTRAINTS",
    "PipelineStage",
    "build_pipeline",
    "validate_pipeline",
]
