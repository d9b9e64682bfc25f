"""Concurrent, type-sequenced component processing."""

from deployer.pipeline.failed import FailedComponents
from deployer.pipeline.outcome import ComponentOutcome, OutcomeKind, classify_error
from deployer.pipeline.pipeline import ComponentPipeline
from deployer.pipeline.processors import (
    ComponentProcessor,
    ProcessingStage,
    ServerProcessor,
    StorageProcessor,
    default_processors,
)
from deployer.pipeline.sequence import SEQUENCES, DeployVM, SequenceFlags, component_sequence, select_sequence

__all__ = [
    "ComponentOutcome",
    "ComponentPipeline",
    "ComponentProcessor",
    "DeployVM",
    "FailedComponents",
    "OutcomeKind",
    "ProcessingStage",
    "SEQUENCES",
    "SequenceFlags",
    "ServerProcessor",
    "StorageProcessor",
    "classify_error",
    "component_sequence",
    "default_processors",
    "select_sequence",
]
