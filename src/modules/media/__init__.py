from src.modules.media.models import (
    InboundMedia,
    MediaJob,
    MediaKind,
    MediaVariant,
    PipelineState,
    ProcessingRequest,
    RemoteFile,
)

__all__ = [
    "InboundMedia",
    "MediaJob",
    "MediaKind",
    "MediaVariant",
    "PipelineState",
    "ProcessingRequest",
    "RemoteFile",
]
