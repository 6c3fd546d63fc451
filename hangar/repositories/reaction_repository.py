"""
Build 反应（点赞 / 点踩）数据访问
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from sqlalchemy import func, literal, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from hangar.core.database import transaction
from hangar.core.logging import get_logger
from hangar.models.build import Build, BuildReaction, BuildStatus, ReactionType
from hangar.models.types import utcnow
from hangar.repositories.base import SQLAlchemyRepository

logger = get_logger(__name__)

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def reaction_upsert(dialect: str, build_id: str, user_id: str, reaction: ReactionType, now):
    """
    INSERT ... SELECT FROM builds WHERE status = PUBLISHED
    ON CONFLICT (build_id, user_id) DO UPDATE

    单条语句完成状态检查和写入，并发的首次反应不会撞唯一约束；
    Build 不是 PUBLISHED 时影响 0 行
    """
    insert = _UPSERT_INSERTS.get(dialect)
    if insert is None:
        raise NotImplementedError(f"reaction upsert not supported on {dialect}")

    source = select(
        Build.id,
        literal(user_id, BuildReaction.user_id.type),
        literal(reaction, BuildReaction.reaction.type),
        literal(now, BuildReaction.created_at.type),
        literal(now, BuildReaction.updated_at.type),
    ).where(Build.id == build_id, Build.status == BuildStatus.PUBLISHED)

    stmt = insert(BuildReaction).from_select(
        ["build_id", "user_id", "reaction", "created_at", "updated_at"], source
    )
    return stmt.on_conflict_do_update(
        index_elements=[BuildReaction.build_id, BuildReaction.user_id],
        set_={
            "reaction": stmt.excluded.reaction,
            "updated_at": stmt.excluded.updated_at,
        },
    )


@dataclass
class ReactionSummary:
    like_count: int = 0
    dislike_count: int = 0
    viewer_reaction: Optional[ReactionType] = None


class ReactionRepository(SQLAlchemyRepository[BuildReaction, Tuple[str, str]]):
    """每个 (build_id, user_id) 最多一条反应，只能作用于 PUBLISHED Build"""

    model_class = BuildReaction

    def __init__(self, db: Session):
        super().__init__(db)

    def _published_exists(self, build_id: str) -> bool:
        return (
            self.db.query(Build.id)
            .filter(Build.id == build_id, Build.status == BuildStatus.PUBLISHED)
            .first()
            is not None
        )

    def set_reaction(self, build_id: str, user_id: str, reaction: ReactionType) -> bool:
        """写入或覆盖反应；Build 不是 PUBLISHED 时返回 False"""
        dialect = self.db.get_bind().dialect.name
        stmt = reaction_upsert(dialect, build_id, user_id, reaction, utcnow())
        with transaction(self.db):
            result = self.db.execute(stmt)
            if result.rowcount == 0:
                return False
        logger.info("build_reaction_set", build_id=build_id, reaction=reaction.value)
        return True

    def clear_reaction(self, build_id: str, user_id: str) -> bool:
        """删除反应（不存在时也视为成功）；Build 不是 PUBLISHED 时返回 False"""
        with transaction(self.db):
            if not self._published_exists(build_id):
                return False
            self.query().filter(
                BuildReaction.build_id == build_id, BuildReaction.user_id == user_id
            ).delete(synchronize_session=False)
        logger.info("build_reaction_cleared", build_id=build_id)
        return True

    def delete_for_builds(self, build_ids: Sequence[str]) -> int:
        if not build_ids:
            return 0
        return (
            self.query()
            .filter(BuildReaction.build_id.in_(list(build_ids)))
            .delete(synchronize_session=False)
        )

    def summarize(
        self, build_ids: Sequence[str], viewer_user_id: Optional[str] = None
    ) -> Dict[str, ReactionSummary]:
        """按存储的反应行统计计数，并附带当前用户自己的反应"""
        summaries: Dict[str, ReactionSummary] = {i: ReactionSummary() for i in build_ids}
        if not build_ids:
            return summaries

        rows = (
            self.db.query(BuildReaction.build_id, BuildReaction.reaction, func.count())
            .filter(BuildReaction.build_id.in_(list(build_ids)))
            .group_by(BuildReaction.build_id, BuildReaction.reaction)
            .all()
        )
        for build_id, reaction, count in rows:
            summary = summaries[build_id]
            if reaction == ReactionType.LIKE:
                summary.like_count = count
            elif reaction == ReactionType.DISLIKE:
                summary.dislike_count = count

        if viewer_user_id:
            own = (
                self.db.query(BuildReaction.build_id, BuildReaction.reaction)
                .filter(
                    BuildReaction.build_id.in_(list(build_ids)),
                    BuildReaction.user_id == viewer_user_id,
                )
                .all()
            )
            for build_id, reaction in own:
                summaries[build_id].viewer_reaction = reaction
        return summaries
