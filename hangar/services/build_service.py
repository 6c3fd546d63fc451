"""
Build 生命周期服务

状态流转（所有者）:
    DRAFT / UNPUBLISHED  --submit-->     PENDING_REVIEW
    PUBLISHED / PENDING_REVIEW --unpublish--> UNPUBLISHED
    编辑 PUBLISHED 时写入修订草稿，公开内容不变

状态流转（审核员）:
    PENDING_REVIEW --approve--> PUBLISHED（修订行合并回已发布 Build）
    PENDING_REVIEW --decline--> UNPUBLISHED（记录拒绝原因）
    DRAFT / UNPUBLISHED --publish--> PUBLISHED（直接发布，仅非修订行）
    PUBLISHED / PENDING_REVIEW --unpublish--> UNPUBLISHED

未找到、非本人、状态不匹配统一抛出 BuildNotFoundError
"""

from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.orm import Session

from hangar.core.exceptions import (
    BuildDeletionBlockedError,
    BuildInputError,
    BuildNotFoundError,
    PublishRejectedError,
)
from hangar.core.logging import get_logger
from hangar.models.build import (
    BuildStatus,
    DeclineFilter,
    GearType,
    ReactionType,
    is_deletable,
)
from hangar.repositories.base import clamp_page
from hangar.repositories.build_repository import BuildRepository
from hangar.schemas.build import (
    BuildListResponse,
    BuildView,
    CreateBuildParams,
    TransitionResult,
    UpdateBuildParams,
    ValidationResult,
)
from hangar.services.catalog import CatalogClient
from hangar.services.image_assets import ImageAssetStore
from hangar.services.presenter import BuildPresenter
from hangar.services.validation import validate_for_publish

logger = get_logger(__name__)

OWNER_LIST_DEFAULT_LIMIT = 50
PUBLIC_LIST_DEFAULT_LIMIT = 24
MODERATION_LIST_DEFAULT_LIMIT = 30


def _require(value: Optional[str], message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise BuildInputError(message)
    return value


def normalize_reaction(value) -> ReactionType:
    """LIKE / DISLIKE（忽略大小写）"""
    if isinstance(value, ReactionType):
        return value
    try:
        return ReactionType(str(value or "").strip().upper())
    except ValueError:
        raise BuildInputError("reaction must be LIKE or DISLIKE") from None


class BuildService:
    """Build 服务"""

    def __init__(
        self,
        db: Session,
        catalog: CatalogClient,
        image_store: Optional[ImageAssetStore] = None,
    ):
        self.db = db
        self.catalog = catalog
        self.image_store = image_store
        self.builds = BuildRepository(db)
        self.presenter = BuildPresenter(db, catalog, self.builds)

    # ========== 读取 ==========

    def get_by_owner(self, build_id: str, owner_user_id: str) -> Optional[BuildView]:
        """所有者视图（已发布 Build 叠加修订草稿内容）"""
        build = self.builds.get_for_owner(build_id, owner_user_id)
        return self.presenter.present_one(build, owner_user_id, owner_projection=True)

    def get_public(self, build_id: str, viewer_user_id: Optional[str] = None) -> Optional[BuildView]:
        build = self.builds.get_public(build_id)
        return self.presenter.present_one(build, viewer_user_id)

    def get_for_moderation(self, build_id: str) -> Optional[BuildView]:
        build = self.builds.get_for_moderation(build_id)
        return self.presenter.present_one(build)

    def list_by_owner(
        self, owner_user_id: str, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> BuildListResponse:
        limit, offset = clamp_page(limit, offset, OWNER_LIST_DEFAULT_LIMIT)
        rows, total = self.builds.list_by_owner(owner_user_id, limit, offset)
        return BuildListResponse(
            builds=self.presenter.present(rows, owner_user_id, owner_projection=True),
            total_count=total,
            limit=limit,
            offset=offset,
        )

    def list_public(
        self,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        viewer_user_id: Optional[str] = None,
        frame_filter: Optional[str] = None,
    ) -> BuildListResponse:
        limit, offset = clamp_page(limit, offset, PUBLIC_LIST_DEFAULT_LIMIT)
        frame_item_ids = None
        if frame_filter and frame_filter.strip():
            frame_item_ids = self.catalog.search_item_ids(GearType.FRAME.value, frame_filter)
        rows, total = self.builds.list_public(limit, offset, frame_item_ids)
        return BuildListResponse(
            builds=self.presenter.present(rows, viewer_user_id),
            total_count=total,
            limit=limit,
            offset=offset,
        )

    def list_published_by_owner(
        self, owner_user_id: str, viewer_user_id: Optional[str] = None, limit: Optional[int] = None
    ) -> List[BuildView]:
        owner_user_id = (owner_user_id or "").strip()
        if not owner_user_id:
            return []
        limit, _ = clamp_page(limit, 0, PUBLIC_LIST_DEFAULT_LIMIT)
        rows = self.builds.list_published_by_owner(owner_user_id, limit)
        return self.presenter.present(rows, viewer_user_id)

    # ========== 所有者操作 ==========

    def create_draft(self, owner_user_id: str, params: CreateBuildParams) -> BuildView:
        owner_user_id = _require(owner_user_id, "owner user id is required")
        build = self.builds.create(BuildStatus.DRAFT, params, owner_user_id=owner_user_id)
        return self.presenter.present_one(build, owner_user_id, owner_projection=True)

    def update_by_owner(
        self, build_id: str, owner_user_id: str, params: UpdateBuildParams
    ) -> BuildView:
        """
        所有者编辑

        编辑 PUBLISHED Build 时返回的是修订草稿（不同的 id，状态 DRAFT）
        """
        target = self.builds.update(build_id, owner_user_id, params)
        if target is None:
            raise BuildNotFoundError()
        return self.presenter.present_one(target, owner_user_id, owner_projection=True)

    def submit(self, build_id: str, owner_user_id: str) -> TransitionResult:
        """
        提交审核

        发布校验结果随返回值一起给出，但不阻止提交（由审核员处理）
        """
        current = self.get_by_owner(build_id, owner_user_id)
        if current is None:
            raise BuildNotFoundError()
        validation = validate_for_publish(current)

        if self.builds.submit(build_id, owner_user_id) is None:
            raise BuildNotFoundError()
        logger.info(
            "build_submitted",
            build_id=build_id,
            valid=validation.valid,
            errors=len(validation.errors),
        )
        return TransitionResult(
            build=self.get_by_owner(build_id, owner_user_id),
            validation=validation,
        )

    def unpublish(self, build_id: str, owner_user_id: str) -> BuildView:
        if self.builds.unpublish(build_id, owner_user_id) is None:
            raise BuildNotFoundError()
        logger.info("build_unpublished", build_id=build_id, by="owner")
        return self.get_by_owner(build_id, owner_user_id)

    def set_status(self, build_id: str, owner_user_id: str, status) -> TransitionResult:
        """所有者可发起的状态变更：PENDING_REVIEW（提交）或 UNPUBLISHED（下线）"""
        try:
            target = BuildStatus.normalize(status)
        except ValueError as e:
            raise BuildInputError(str(e)) from None

        if target == BuildStatus.PENDING_REVIEW:
            return self.submit(build_id, owner_user_id)
        if target == BuildStatus.UNPUBLISHED:
            return TransitionResult(
                build=self.unpublish(build_id, owner_user_id),
                validation=ValidationResult(),
            )
        raise BuildInputError(f"unsupported status transition to {target.value}")

    def delete_by_owner(self, build_id: str, owner_user_id: str) -> None:
        build = self.builds.get_for_owner(build_id, owner_user_id)
        if build is None:
            raise BuildNotFoundError()
        if not is_deletable(build.status):
            raise BuildDeletionBlockedError()
        if not self.builds.delete(build_id, owner_user_id):
            raise BuildNotFoundError()

    # ========== 图片 ==========

    def _release_image(self, previous: Optional[str], current: Optional[str]) -> None:
        """
        旧图片不再被任何 Build 引用时，通知图片服务删除

        在数据库提交之后执行：删除失败只记录日志，不影响已经生效的修改
        """
        if not previous or previous == current or self.image_store is None:
            return
        if self.builds.image_in_use(previous):
            return
        try:
            self.image_store.delete_asset(previous)
        except (BotoCoreError, ClientError, ValueError) as e:
            logger.warning("build_image_release_failed", image_asset_id=previous, error=str(e))
            return
        logger.info("build_image_released", image_asset_id=previous)

    def set_image(self, build_id: str, owner_user_id: str, image_asset_id: str) -> BuildView:
        image_asset_id = _require(image_asset_id, "image asset id is required")
        result = self.builds.set_image(build_id, owner_user_id, image_asset_id)
        if result is None:
            raise BuildNotFoundError()
        target, previous = result
        self._release_image(previous, image_asset_id)
        return self.presenter.present_one(target, owner_user_id, owner_projection=True)

    def delete_image(self, build_id: str, owner_user_id: str) -> BuildView:
        result = self.builds.set_image(build_id, owner_user_id, None)
        if result is None:
            raise BuildNotFoundError()
        target, previous = result
        self._release_image(previous, None)
        return self.presenter.present_one(target, owner_user_id, owner_projection=True)

    # ========== 反应 ==========

    def set_reaction(self, build_id: str, user_id: str, reaction) -> BuildView:
        build_id = _require(build_id, "build id is required")
        user_id = _require(user_id, "user id is required")
        reaction = normalize_reaction(reaction)
        if not self.builds.reactions.set_reaction(build_id, user_id, reaction):
            raise BuildNotFoundError()
        return self.get_public(build_id, user_id)

    def clear_reaction(self, build_id: str, user_id: str) -> BuildView:
        build_id = _require(build_id, "build id is required")
        user_id = _require(user_id, "user id is required")
        if not self.builds.reactions.clear_reaction(build_id, user_id):
            raise BuildNotFoundError()
        return self.get_public(build_id, user_id)

    # ========== 审核 ==========

    def list_for_moderation(
        self,
        status=None,
        query: str = "",
        decline_filter=DeclineFilter.ALL,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> BuildListResponse:
        try:
            status = BuildStatus.normalize(status) if status else BuildStatus.PENDING_REVIEW
            decline_filter = DeclineFilter(decline_filter or DeclineFilter.ALL)
        except ValueError as e:
            raise BuildInputError(str(e)) from None

        limit, offset = clamp_page(limit, offset, MODERATION_LIST_DEFAULT_LIMIT)
        rows, total = self.builds.list_for_moderation(
            status, (query or "").strip(), decline_filter, limit, offset
        )
        return BuildListResponse(
            builds=self.presenter.present(rows),
            total_count=total,
            limit=limit,
            offset=offset,
        )

    def update_for_moderation(self, build_id: str, params: UpdateBuildParams) -> BuildView:
        build = self.builds.update_for_moderation(build_id, params)
        if build is None:
            raise BuildNotFoundError()
        return self.presenter.present_one(build)

    def set_image_for_moderation(self, build_id: str, image_asset_id: str) -> BuildView:
        image_asset_id = _require(image_asset_id, "image asset id is required")
        result = self.builds.set_image_for_moderation(build_id, image_asset_id)
        if result is None:
            raise BuildNotFoundError()
        build, previous = result
        self._release_image(previous, image_asset_id)
        return self.presenter.present_one(build)

    def delete_image_for_moderation(self, build_id: str) -> BuildView:
        result = self.builds.set_image_for_moderation(build_id, None)
        if result is None:
            raise BuildNotFoundError()
        build, previous = result
        self._release_image(previous, None)
        return self.presenter.present_one(build)

    def approve_for_moderation(self, build_id: str) -> TransitionResult:
        """
        审核通过 PENDING_REVIEW 的 Build

        先做发布校验，未通过时返回 applied=False 且不修改数据；
        修订行合并回已发布 Build，返回的是已发布 Build
        """
        current = self.get_for_moderation(build_id)
        if current is None or current.status != BuildStatus.PENDING_REVIEW:
            raise BuildNotFoundError()
        return self._publish(current)

    def publish_for_moderation(self, build_id: str) -> TransitionResult:
        """
        审核员发布

        PENDING_REVIEW 走审核通过流程；DRAFT / UNPUBLISHED 的非修订行直接发布
        """
        current = self.get_for_moderation(build_id)
        if current is None:
            raise BuildNotFoundError()
        if current.status == BuildStatus.PENDING_REVIEW:
            return self._publish(current)
        if current.status not in (BuildStatus.DRAFT, BuildStatus.UNPUBLISHED):
            raise BuildNotFoundError()
        if current.revision_of_build_id:
            # 修订行只能通过审核合并发布
            raise BuildNotFoundError()
        return self._publish(current)

    def _publish(self, current: BuildView) -> TransitionResult:
        """
        发布校验与状态变更在同一事务中完成

        校验对象是仓储层锁定后重新读到的行，读取之后的并发编辑不会被带着发布
        """
        checked = {}

        def gate(row) -> None:
            view = self.presenter.present_one(row)
            validation = validate_for_publish(view)
            if not validation.valid:
                raise PublishRejectedError(view, validation)
            checked["validation"] = validation
            if row.revision_of_build_id:
                target = self.builds.get_by_id(row.revision_of_build_id)
                checked["replaced_image"] = target.image_asset_id if target is not None else None

        try:
            if current.status == BuildStatus.PENDING_REVIEW:
                published_id = self.builds.approve(current.id, gate)
            else:
                published_id = self.builds.publish_directly(current.id, gate)
        except PublishRejectedError as e:
            logger.info(
                "build_publish_rejected",
                build_id=current.id,
                errors=[f"{i.category}:{i.code}" for i in e.validation.errors],
            )
            return TransitionResult(build=e.build, validation=e.validation, applied=False)
        if published_id is None:
            raise BuildNotFoundError()

        published = self.get_for_moderation(published_id)
        self._release_image(checked.get("replaced_image"), published.image_asset_id)

        logger.info(
            "build_published",
            build_id=published_id,
            revision_id=current.id if published_id != current.id else None,
        )
        return TransitionResult(build=published, validation=checked["validation"])

    def decline_for_moderation(self, build_id: str, reason: str) -> BuildView:
        reason = _require(reason, "decline reason is required")
        if self.builds.decline(build_id, reason) is None:
            raise BuildNotFoundError()
        logger.info("build_declined", build_id=build_id)
        return self.get_for_moderation(build_id)

    def unpublish_for_moderation(self, build_id: str) -> BuildView:
        if self.builds.unpublish(build_id) is None:
            raise BuildNotFoundError()
        logger.info("build_unpublished", build_id=build_id, by="moderator")
        return self.get_for_moderation(build_id)
