"""
Build 数据访问

所有写操作都是带条件（id / owner / status）的单行更新，命中 0 行即视为"未找到"；
多语句写操作（创建 + 零件、修订暂存、审核合并、删除）在同一个 transaction 中完成。
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Query, Session

from hangar.core.database import transaction
from hangar.core.logging import get_logger
from hangar.models.build import (
    DELETE_BLOCKED_STATUSES,
    DIRECT_PUBLISHABLE_STATUSES,
    OWNER_EDITABLE_STATUSES,
    OWNER_VISIBLE_STATUSES,
    SUBMITTABLE_STATUSES,
    UNPUBLISHABLE_STATUSES,
    Build,
    BuildPart,
    BuildStatus,
    DeclineFilter,
    GearType,
    is_owner_editable,
    is_publicly_visible,
)
from hangar.models.types import utcnow
from hangar.repositories.base import SQLAlchemyRepository
from hangar.repositories.parts import (
    delete_parts,
    load_parts,
    part_inputs_from_parts,
    replace_parts,
)
from hangar.repositories.reaction_repository import ReactionRepository
from hangar.repositories.revision_staging import (
    ensure_revision_draft,
    merge_approved_revision,
    select_open_revision,
)
from hangar.schemas.build import CreateBuildParams, UpdateBuildParams

logger = get_logger(__name__)

DELETABLE_STATUSES = OWNER_VISIBLE_STATUSES - DELETE_BLOCKED_STATUSES

# 发布前的校验回调：参数为锁定后的行，不通过时抛出异常
PublishGate = Callable[[Build], None]


def _clean_text(value: Optional[str]) -> Optional[str]:
    """去首尾空白，空字符串存为 NULL"""
    if value is None:
        return None
    value = value.strip()
    return value or None


class BuildRepository(SQLAlchemyRepository[Build, str]):
    """Build Repository"""

    model_class = Build

    def __init__(self, db: Session):
        super().__init__(db)
        self.reactions = ReactionRepository(db)

    # ========== 查询条件 ==========

    def _owned(self, build_id: str, owner_user_id: str, statuses) -> Query:
        return self.query().filter(
            Build.id == build_id,
            Build.owner_user_id == owner_user_id,
            Build.status.in_(list(statuses)),
        )

    def _by_id(self, build_id: str, statuses) -> Query:
        return self.query().filter(Build.id == build_id, Build.status.in_(list(statuses)))

    @staticmethod
    def _token_filter(token: str, now: datetime):
        return and_(
            Build.token == token,
            or_(
                and_(
                    Build.status == BuildStatus.TEMP,
                    or_(Build.expires_at.is_(None), Build.expires_at > now),
                ),
                Build.status == BuildStatus.SHARED,
            ),
        )

    # ========== 创建 ==========

    def _insert(
        self,
        status: BuildStatus,
        params: CreateBuildParams,
        owner_user_id: Optional[str] = None,
        token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        image_asset_id: Optional[str] = None,
    ) -> Build:
        """在当前事务中插入 Build 及其零件"""
        now = utcnow()
        build = Build(
            owner_user_id=owner_user_id,
            status=status,
            token=token,
            expires_at=expires_at,
            title=(params.title or "").strip(),
            description=_clean_text(params.description),
            build_video_url=_clean_text(params.build_video_url),
            flight_video_url=_clean_text(params.flight_video_url),
            source_aircraft_id=_clean_text(params.source_aircraft_id),
            image_asset_id=image_asset_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(build)
        self.db.flush()
        replace_parts(self.db, build.id, params.parts)
        return build

    def create(
        self,
        status: BuildStatus,
        params: CreateBuildParams,
        owner_user_id: Optional[str] = None,
        token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Build:
        """创建 Build（DRAFT / TEMP），零件在同一事务中写入"""
        with transaction(self.db):
            build = self._insert(status, params, owner_user_id, token, expires_at)
        logger.info("build_created", build_id=build.id, status=status.value)
        return build

    # ========== 读取 ==========

    def get_for_owner(self, build_id: str, owner_user_id: str) -> Optional[Build]:
        return self._owned(build_id, owner_user_id, OWNER_VISIBLE_STATUSES).first()

    def get_public(self, build_id: str) -> Optional[Build]:
        return self._by_id(build_id, [BuildStatus.PUBLISHED]).first()

    def get_for_moderation(self, build_id: str) -> Optional[Build]:
        return self._by_id(build_id, OWNER_VISIBLE_STATUSES).first()

    def get_by_token(self, token: str, now: Optional[datetime] = None) -> Optional[Build]:
        """TEMP（未过期）或 SHARED"""
        if not token:
            return None
        return self.query().filter(self._token_filter(token, now or utcnow())).first()

    def image_in_use(self, image_asset_id: str) -> bool:
        """是否仍有 Build 行引用该图片（修订草稿与已发布行可能共用一份）"""
        return (
            self.db.query(Build.id).filter(Build.image_asset_id == image_asset_id).first()
            is not None
        )

    def open_revisions_for(
        self, published_ids: Sequence[str], owner_user_id: str
    ) -> Dict[str, Build]:
        """批量读取已发布 Build 的未结束修订（所有者视图叠加用）"""
        result: Dict[str, Build] = {}
        if not published_ids or not owner_user_id:
            return result
        rows = (
            self.query()
            .filter(
                Build.owner_user_id == owner_user_id,
                Build.revision_of_build_id.in_(list(published_ids)),
                Build.status.in_(list(OWNER_EDITABLE_STATUSES)),
            )
            .order_by(Build.updated_at.desc(), Build.created_at.desc())
            .all()
        )
        for row in rows:
            result.setdefault(row.revision_of_build_id, row)
        return result

    def list_by_owner(self, owner_user_id: str, limit: int, offset: int) -> Tuple[List[Build], int]:
        """所有者的 Build 列表，不含修订行"""
        query = self.query().filter(
            Build.owner_user_id == owner_user_id,
            Build.revision_of_build_id.is_(None),
            Build.status.in_(list(OWNER_VISIBLE_STATUSES)),
        )
        query = query.order_by(Build.updated_at.desc(), Build.created_at.desc())
        return self.paginate(query, limit, offset)

    def list_public(
        self, limit: int, offset: int, frame_item_ids: Optional[Sequence[str]] = None
    ) -> Tuple[List[Build], int]:
        """
        公开列表

        frame_item_ids 不为 None 时，只返回机架零件属于这些目录条目的 Build
        """
        query = self.query().filter(Build.status == BuildStatus.PUBLISHED)
        if frame_item_ids is not None:
            query = query.filter(
                Build.parts.any(
                    and_(
                        BuildPart.gear_type == GearType.FRAME.value,
                        BuildPart.catalog_item_id.in_(list(frame_item_ids)),
                    )
                )
            )
        query = query.order_by(Build.published_at.desc(), Build.created_at.desc())
        return self.paginate(query, limit, offset)

    def list_published_by_owner(self, owner_user_id: str, limit: int) -> List[Build]:
        return (
            self.query()
            .filter(
                Build.owner_user_id == owner_user_id,
                Build.status == BuildStatus.PUBLISHED,
            )
            .order_by(Build.published_at.desc(), Build.created_at.desc())
            .limit(limit)
            .all()
        )

    def list_for_moderation(
        self,
        status: BuildStatus,
        search: str,
        decline_filter: DeclineFilter,
        limit: int,
        offset: int,
    ) -> Tuple[List[Build], int]:
        query = self.query().filter(Build.status == status)

        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(
                or_(
                    func.lower(func.coalesce(Build.title, "")).like(pattern),
                    func.lower(func.coalesce(Build.description, "")).like(pattern),
                    func.lower(func.coalesce(Build.build_video_url, "")).like(pattern),
                    func.lower(func.coalesce(Build.flight_video_url, "")).like(pattern),
                    func.lower(func.coalesce(Build.owner_user_id, "")).like(pattern),
                )
            )

        reason = func.trim(func.coalesce(Build.moderation_reason, ""))
        if decline_filter == DeclineFilter.DECLINED:
            query = query.filter(reason != "")
        elif decline_filter == DeclineFilter.NOT_DECLINED:
            query = query.filter(reason == "")

        query = query.order_by(Build.updated_at.desc(), Build.created_at.desc())
        return self.paginate(query, limit, offset)

    # ========== 编辑 ==========

    def _editable_target(self, build_id: str, owner_user_id: str) -> Optional[Build]:
        """所有者编辑的落点：PUBLISHED 走修订草稿，其余可编辑状态原地修改"""
        build = self.get_for_owner(build_id, owner_user_id)
        if build is None:
            return None
        if is_publicly_visible(build.status):
            return ensure_revision_draft(self.db, build.id, owner_user_id)
        if is_owner_editable(build.status):
            return build
        return None

    def _apply_update(self, build: Build, params: UpdateBuildParams) -> None:
        if params.title is not None:
            build.title = params.title.strip()
        if params.description is not None:
            build.description = _clean_text(params.description)
        if params.build_video_url is not None:
            build.build_video_url = _clean_text(params.build_video_url)
        if params.flight_video_url is not None:
            build.flight_video_url = _clean_text(params.flight_video_url)
        build.updated_at = utcnow()
        self.db.flush()
        if params.parts is not None:
            replace_parts(self.db, build.id, params.parts)

    def update(self, build_id: str, owner_user_id: str, params: UpdateBuildParams) -> Optional[Build]:
        """
        所有者编辑

        Returns:
            实际被修改的行（编辑已发布 Build 时为修订草稿）；未找到返回 None
        """
        with transaction(self.db):
            target = self._editable_target(build_id, owner_user_id)
            if target is None:
                return None
            self._apply_update(target, params)
        logger.info("build_updated", build_id=build_id, target_id=target.id)
        return target

    def update_for_moderation(self, build_id: str, params: UpdateBuildParams) -> Optional[Build]:
        """审核员原地编辑（仅 DRAFT / PENDING_REVIEW / UNPUBLISHED）"""
        with transaction(self.db):
            build = self._by_id(build_id, OWNER_EDITABLE_STATUSES).first()
            if build is None:
                return None
            self._apply_update(build, params)
        logger.info("build_updated_for_moderation", build_id=build_id)
        return build

    def set_image(
        self, build_id: str, owner_user_id: str, image_asset_id: Optional[str]
    ) -> Optional[Tuple[Build, Optional[str]]]:
        """
        设置（或清除）所有者 Build 的图片

        Returns:
            (被修改的行, 旧的 image_asset_id)；未找到返回 None
        """
        with transaction(self.db):
            target = self._editable_target(build_id, owner_user_id)
            if target is None:
                return None
            previous = target.image_asset_id
            target.image_asset_id = image_asset_id
            target.updated_at = utcnow()
            self.db.flush()
        return target, previous

    def set_image_for_moderation(
        self, build_id: str, image_asset_id: Optional[str]
    ) -> Optional[Tuple[Build, Optional[str]]]:
        with transaction(self.db):
            build = self.get_for_moderation(build_id)
            if build is None:
                return None
            previous = build.image_asset_id
            build.image_asset_id = image_asset_id
            build.updated_at = utcnow()
            self.db.flush()
        return build, previous

    # ========== 状态流转 ==========

    def submit(self, build_id: str, owner_user_id: str) -> Optional[str]:
        """
        DRAFT / UNPUBLISHED → PENDING_REVIEW

        build_id 是 PUBLISHED Build 时提交它的修订草稿；返回 build_id，未找到返回 None
        """
        now = utcnow()
        with transaction(self.db):
            rows = self._owned(build_id, owner_user_id, SUBMITTABLE_STATUSES).update(
                {
                    Build.status: BuildStatus.PENDING_REVIEW,
                    Build.published_at: None,
                    Build.moderation_reason: None,
                    Build.updated_at: now,
                },
                synchronize_session=False,
            )
            if rows:
                return build_id

            published = self._owned(build_id, owner_user_id, [BuildStatus.PUBLISHED]).first()
            if published is None:
                return None
            revision = select_open_revision(self.db, published.id, owner_user_id)
            if revision is None or revision.status not in SUBMITTABLE_STATUSES:
                return None
            revision.status = BuildStatus.PENDING_REVIEW
            revision.published_at = None
            revision.moderation_reason = None
            revision.updated_at = now
            self.db.flush()
            logger.info("build_revision_submitted", build_id=build_id, revision_id=revision.id)
        return build_id

    def publish_directly(self, build_id: str, gate: Optional[PublishGate] = None) -> Optional[str]:
        """
        审核员直接发布非修订行（DRAFT / UNPUBLISHED / PENDING_REVIEW）

        gate 在同一事务中、锁定行之后执行；抛出异常时整个发布回滚
        """
        now = utcnow()
        with transaction(self.db):
            candidate = (
                self._by_id(build_id, DIRECT_PUBLISHABLE_STATUSES)
                .filter(Build.revision_of_build_id.is_(None))
                .with_for_update()
                .first()
            )
            if candidate is None:
                return None
            if gate is not None:
                gate(candidate)
            rows = (
                self._by_id(build_id, DIRECT_PUBLISHABLE_STATUSES)
                .filter(Build.revision_of_build_id.is_(None))
                .update(
                    {
                        Build.status: BuildStatus.PUBLISHED,
                        Build.published_at: now,
                        Build.expires_at: None,
                        Build.moderation_reason: None,
                        Build.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
        return build_id if rows else None

    def approve(self, build_id: str, gate: Optional[PublishGate] = None) -> Optional[str]:
        """
        审核通过 PENDING_REVIEW

        修订行合并回已发布 Build（返回已发布 Build 的 ID），普通行原地发布；
        gate 校验的是锁定后读到的内容，校验与状态变更在同一事务中
        """
        with transaction(self.db):
            pending = self._by_id(build_id, [BuildStatus.PENDING_REVIEW]).with_for_update().first()
            if pending is None:
                return None
            if gate is not None:
                gate(pending)
            if pending.revision_of_build_id:
                return merge_approved_revision(self.db, pending)

            now = utcnow()
            rows = self._by_id(build_id, [BuildStatus.PENDING_REVIEW]).update(
                {
                    Build.status: BuildStatus.PUBLISHED,
                    Build.published_at: now,
                    Build.expires_at: None,
                    Build.moderation_reason: None,
                    Build.updated_at: now,
                },
                synchronize_session=False,
            )
        return build_id if rows else None

    def decline(self, build_id: str, reason: str) -> Optional[str]:
        with transaction(self.db):
            rows = self._by_id(build_id, [BuildStatus.PENDING_REVIEW]).update(
                {
                    Build.status: BuildStatus.UNPUBLISHED,
                    Build.published_at: None,
                    Build.moderation_reason: reason,
                    Build.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        return build_id if rows else None

    def unpublish(self, build_id: str, owner_user_id: Optional[str] = None) -> Optional[str]:
        """PUBLISHED / PENDING_REVIEW → UNPUBLISHED；owner_user_id 为空时为审核员操作"""
        if owner_user_id is None:
            query = self._by_id(build_id, UNPUBLISHABLE_STATUSES)
        else:
            query = self._owned(build_id, owner_user_id, UNPUBLISHABLE_STATUSES)
        with transaction(self.db):
            rows = query.update(
                {
                    Build.status: BuildStatus.UNPUBLISHED,
                    Build.published_at: None,
                    Build.moderation_reason: None,
                    Build.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        return build_id if rows else None

    # ========== 临时 / 分享 ==========

    def update_temp_by_token(
        self,
        token: str,
        params: UpdateBuildParams,
        next_token: str,
        expires_at: datetime,
        now: Optional[datetime] = None,
    ) -> Optional[Build]:
        """
        写时复制：以旧 TEMP 的内容合并 params 插入一个新的 TEMP 行（新 token），旧行不变

        SHARED 或已过期的 token 返回 None
        """
        with transaction(self.db):
            source = self.get_by_token(token, now)
            if source is None or source.status != BuildStatus.TEMP:
                return None

            if params.parts is not None:
                parts = params.parts
            else:
                parts = part_inputs_from_parts(load_parts(self.db, [source.id]).get(source.id, []))

            merged = CreateBuildParams(
                title=params.title if params.title is not None else source.title,
                description=params.description if params.description is not None else source.description,
                build_video_url=(
                    params.build_video_url
                    if params.build_video_url is not None
                    else source.build_video_url
                ),
                flight_video_url=(
                    params.flight_video_url
                    if params.flight_video_url is not None
                    else source.flight_video_url
                ),
                source_aircraft_id=source.source_aircraft_id,
                parts=parts,
            )
            build = self._insert(
                BuildStatus.TEMP,
                merged,
                owner_user_id=source.owner_user_id,
                token=next_token,
                expires_at=expires_at,
                image_asset_id=source.image_asset_id,
            )
        logger.info("temp_build_forked", source_id=source.id, build_id=build.id)
        return build

    def share_temp_by_token(self, token: str, now: Optional[datetime] = None) -> Optional[Build]:
        """TEMP → SHARED（原地，清除 expires_at）；已经是 SHARED 时原样返回"""
        with transaction(self.db):
            build = self.get_by_token(token, now)
            if build is None:
                return None
            if build.status == BuildStatus.SHARED:
                return build
            rows = (
                self.query()
                .filter(Build.id == build.id, Build.status == BuildStatus.TEMP)
                .update(
                    {
                        Build.status: BuildStatus.SHARED,
                        Build.expires_at: None,
                        Build.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if rows == 0:
                return None
        logger.info("temp_build_shared", build_id=build.id)
        return self.get_by_token(token, now)

    # ========== 删除 ==========

    def _purge(self, build_ids: List[str]) -> None:
        """删除 Build 行及其零件和反应（当前事务中）"""
        if not build_ids:
            return
        self.reactions.delete_for_builds(build_ids)
        delete_parts(self.db, build_ids)
        self.query().filter(Build.id.in_(build_ids)).delete(synchronize_session=False)

    def delete(self, build_id: str, owner_user_id: str) -> bool:
        """删除所有者的 Build（仅可删除状态），连带删除指向它的修订行"""
        with transaction(self.db):
            build = self._owned(build_id, owner_user_id, DELETABLE_STATUSES).first()
            if build is None:
                return False
            revision_ids = [
                row.id
                for row in self.db.query(Build.id).filter(Build.revision_of_build_id == build.id)
            ]
            self._purge(revision_ids)
            self._purge([build.id])
        logger.info("build_deleted", build_id=build_id, revisions=len(revision_ids))
        return True

    def delete_expired_temp(self, cutoff: datetime) -> int:
        """删除 status = TEMP 且 expires_at <= cutoff 的行，返回删除条数"""
        with transaction(self.db):
            expired_ids = [
                row.id
                for row in self.db.query(Build.id).filter(
                    Build.status == BuildStatus.TEMP,
                    Build.expires_at.isnot(None),
                    Build.expires_at <= cutoff,
                )
            ]
            self._purge(expired_ids)
        return len(expired_ids)
