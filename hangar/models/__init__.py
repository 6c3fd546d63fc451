"""
ORM 模型

导入本包即可把全部表注册到 Base.metadata
"""

from hangar.models.build import (
    Build,
    BuildPart,
    BuildReaction,
    BuildStatus,
    DeclineFilter,
    GearType,
    ReactionType,
)

__all__ = [
    "Build",
    "BuildPart",
    "BuildReaction",
    "BuildStatus",
    "DeclineFilter",
    "GearType",
    "ReactionType",
]
