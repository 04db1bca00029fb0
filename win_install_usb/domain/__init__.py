"""Domain objects shared by the pipeline stages."""

from .models import (
    STAGES,
    TOTAL_STEPS,
    FAT32_SPLIT_CEILING_MB,
    ImageKind,
    InstallImage,
    PartitionScheme,
    PipelineConfig,
    ProgressSample,
    ResolvedDevice,
    RunLog,
    StageDescriptor,
    get_stage,
)

__all__ = [
    "STAGES",
    "TOTAL_STEPS",
    "FAT32_SPLIT_CEILING_MB",
    "ImageKind",
    "InstallImage",
    "PartitionScheme",
    "PipelineConfig",
    "ProgressSample",
    "ResolvedDevice",
    "RunLog",
    "StageDescriptor",
    "get_stage",
]
