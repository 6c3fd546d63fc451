"""
已发布 Build 的修订暂存

所有者编辑 PUBLISHED Build 时不直接修改公开行，而是写入一份修订草稿
（revision_of_build_id 指向公开行）。审核通过后修订内容合并回公开行，修订行删除。

每个 (owner, 已发布 Build) 最多一份未结束修订，由部分唯一索引 uq_builds_open_revision 保证；
并发创建时输家通过唯一约束冲突得知，并改为读取胜出方的修订。

本模块的函数都在调用方的事务中执行，不自行提交。
"""

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hangar.core.database import is_unique_violation
from hangar.core.exceptions import RevisionConflictError
from hangar.core.logging import get_logger
from hangar.models.build import OPEN_REVISION_STATUSES, Build, BuildStatus
from hangar.models.types import utcnow
from hangar.repositories.parts import copy_parts, delete_parts

logger = get_logger(__name__)


def select_open_revision(db: Session, published_build_id: str, owner_user_id: str) -> Optional[Build]:
    """读取 (owner, 已发布 Build) 的未结束修订，最新的优先"""
    return (
        db.query(Build)
        .filter(
            Build.owner_user_id == owner_user_id,
            Build.revision_of_build_id == published_build_id,
            Build.status.in_(list(OPEN_REVISION_STATUSES)),
        )
        .order_by(Build.updated_at.desc(), Build.created_at.desc())
        .first()
    )


def ensure_revision_draft(db: Session, published_build_id: str, owner_user_id: str) -> Optional[Build]:
    """
    取得（或创建）已发布 Build 的修订草稿

    Returns:
        修订行；published_build_id 不是该所有者的 PUBLISHED Build 时返回 None

    Raises:
        RevisionConflictError: 唯一约束冲突后仍读取不到胜出方的修订
    """
    published = (
        db.query(Build)
        .filter(
            Build.id == published_build_id,
            Build.owner_user_id == owner_user_id,
            Build.status == BuildStatus.PUBLISHED,
        )
        .first()
    )
    if published is None:
        return None

    existing = select_open_revision(db, published_build_id, owner_user_id)
    if existing is not None:
        return existing

    now = utcnow()
    revision = Build(
        owner_user_id=owner_user_id,
        status=BuildStatus.DRAFT,
        revision_of_build_id=published.id,
        title=published.title,
        description=published.description,
        build_video_url=published.build_video_url,
        flight_video_url=published.flight_video_url,
        source_aircraft_id=published.source_aircraft_id,
        image_asset_id=published.image_asset_id,
        created_at=now,
        updated_at=now,
    )
    try:
        # 保存点：冲突只回滚这一次插入，外层事务继续
        with db.begin_nested():
            db.add(revision)
            db.flush()
    except IntegrityError as e:
        if not is_unique_violation(e):
            raise
        logger.info(
            "build_revision_race_lost",
            published_build_id=published_build_id,
        )
        winner = select_open_revision(db, published_build_id, owner_user_id)
        if winner is None:
            raise RevisionConflictError(
                f"open revision for build {published_build_id} could not be resolved"
            ) from e
        return winner

    copy_parts(db, published.id, revision.id)
    logger.info(
        "build_revision_created",
        published_build_id=published_build_id,
        revision_id=revision.id,
    )
    return revision


def merge_approved_revision(db: Session, revision: Build) -> Optional[str]:
    """
    把审核通过的修订合并回已发布 Build 并删除修订行

    Returns:
        已发布 Build 的 ID；已发布行不存在（或已不再是 PUBLISHED）时返回 None
    """
    now = utcnow()
    updated = (
        db.query(Build)
        .filter(
            Build.id == revision.revision_of_build_id,
            Build.owner_user_id == revision.owner_user_id,
            Build.status == BuildStatus.PUBLISHED,
        )
        .update(
            {
                Build.title: revision.title,
                Build.description: revision.description,
                Build.build_video_url: revision.build_video_url,
                Build.flight_video_url: revision.flight_video_url,
                Build.source_aircraft_id: revision.source_aircraft_id,
                Build.image_asset_id: revision.image_asset_id,
                Build.moderation_reason: None,
                Build.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if updated == 0:
        return None

    published_id = revision.revision_of_build_id
    copy_parts(db, revision.id, published_id)
    delete_parts(db, [revision.id])
    db.query(Build).filter(Build.id == revision.id).delete(synchronize_session=False)
    logger.info("build_revision_merged", build_id=published_id, revision_id=revision.id)
    return published_id
