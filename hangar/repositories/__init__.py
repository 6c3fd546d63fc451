"""
Repository 层模块

提供数据访问抽象，解耦业务服务与数据库实现
"""

from hangar.repositories.base import BaseRepository, SQLAlchemyRepository
from hangar.repositories.build_repository import BuildRepository
from hangar.repositories.reaction_repository import ReactionRepository

__all__ = [
    "BaseRepository",
    "SQLAlchemyRepository",
    "BuildRepository",
    "ReactionRepository",
]
