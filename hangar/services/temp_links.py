"""
匿名临时 / 分享链接

- 临时 Build（TEMP）按 token 访问，TEMP_BUILD_TTL_HOURS 后过期，由清理任务删除
- 编辑临时 Build 不修改原行：写入一个新的 TEMP 行并签发新 token，旧链接内容不变
- 分享时把当前内容复制成新行并提升为 SHARED（永久、只读），原 token 继续可用

每次编辑都会留下一行 TEMP，直到清理任务运行
"""

import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from hangar.core.config import Settings, get_settings
from hangar.core.exceptions import BuildNotFoundError
from hangar.core.logging import get_logger
from hangar.models.build import BuildStatus
from hangar.models.types import utcnow
from hangar.repositories.build_repository import BuildRepository
from hangar.schemas.build import (
    BuildView,
    CreateBuildParams,
    TempBuildResponse,
    UpdateBuildParams,
)
from hangar.services.catalog import CatalogClient
from hangar.services.presenter import BuildPresenter

logger = get_logger(__name__)


class TempLinkService:
    """临时 / 分享 Build 服务"""

    def __init__(
        self,
        db: Session,
        catalog: CatalogClient,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.builds = BuildRepository(db)
        self.presenter = BuildPresenter(db, catalog, self.builds)

    def _new_token(self) -> str:
        return secrets.token_urlsafe(self.settings.TEMP_TOKEN_BYTES)

    def _expires_at(self, now: datetime) -> datetime:
        return now + timedelta(hours=self.settings.TEMP_BUILD_TTL_HOURS)

    def share_url(self, token: str) -> str:
        base = self.settings.PUBLIC_BASE_URL.rstrip("/")
        return f"{base}/builds/temp/{token}"

    def _response(self, build) -> TempBuildResponse:
        return TempBuildResponse(
            build=self.presenter.present_one(build),
            token=build.token,
            url=self.share_url(build.token),
        )

    def create_temp(self, params: CreateBuildParams) -> TempBuildResponse:
        """创建匿名临时 Build"""
        now = utcnow()
        build = self.builds.create(
            BuildStatus.TEMP,
            params,
            token=self._new_token(),
            expires_at=self._expires_at(now),
        )
        return self._response(build)

    def get_temp_by_token(self, token: str) -> Optional[BuildView]:
        """TEMP（未过期）或 SHARED；其余情况返回 None"""
        token = (token or "").strip()
        build = self.builds.get_by_token(token)
        return self.presenter.present_one(build)

    def update_temp_by_token(self, token: str, params: UpdateBuildParams) -> TempBuildResponse:
        """
        写时复制编辑

        返回新行和新 token；SHARED / 过期 / 不存在的 token 抛出 BuildNotFoundError
        """
        now = utcnow()
        build = self.builds.update_temp_by_token(
            (token or "").strip(),
            params,
            next_token=self._new_token(),
            expires_at=self._expires_at(now),
            now=now,
        )
        if build is None:
            raise BuildNotFoundError()
        return self._response(build)

    def share_temp(self, token: str) -> TempBuildResponse:
        """
        分享临时 Build

        复制当前内容到新行（新 token）并提升为 SHARED，原 TEMP 链接不受影响；
        已经是 SHARED 的 token 原样返回
        """
        token = (token or "").strip()
        current = self.builds.get_by_token(token)
        if current is None:
            raise BuildNotFoundError()
        if current.status == BuildStatus.SHARED:
            return self._response(current)

        fork = self.update_temp_by_token(token, UpdateBuildParams())
        shared = self.builds.share_temp_by_token(fork.token)
        if shared is None:
            raise BuildNotFoundError()
        logger.info("temp_build_snapshot_shared", source_id=current.id, build_id=shared.id)
        return self._response(shared)

    def cleanup_expired_temp(self, cutoff: Optional[datetime] = None) -> int:
        """删除 expires_at <= cutoff 的 TEMP 行（默认 cutoff 为当前时间）"""
        cutoff = cutoff or utcnow()
        deleted = self.builds.delete_expired_temp(cutoff)
        logger.info("temp_builds_swept", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted
