"""Subprocess execution — streamed output, timeouts, per-resource exclusion."""

from conduit.process.models import InvocationDescriptor, ProcessOutcome, SpawnError
from conduit.process.serializer import ResourceSerializer
from conduit.process.streaming import run_command_streaming

__all__ = [
    "InvocationDescriptor",
    "ProcessOutcome",
    "ResourceSerializer",
    "SpawnError",
    "run_command_streaming",
]
