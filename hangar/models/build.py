"""
Build ORM 模型

状态说明：
    TEMP:            匿名临时 Build，按 token 访问，有效期结束后被清理
    SHARED:          由 TEMP 提升而来的永久只读快照
    DRAFT:           用户草稿（也用于已发布 Build 的修订草稿）
    PENDING_REVIEW:  已提交，等待审核
    PUBLISHED:       公开可见
    UNPUBLISHED:     被下线或审核拒绝
"""

import enum
import uuid
from typing import FrozenSet

from sqlalchemy import (
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from hangar.core.database import Base
from hangar.models.types import UTCDateTime, utcnow


class BuildStatus(str, enum.Enum):
    """Build 发布状态"""

    TEMP = "TEMP"
    SHARED = "SHARED"
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    PUBLISHED = "PUBLISHED"
    UNPUBLISHED = "UNPUBLISHED"

    @classmethod
    def normalize(cls, value) -> "BuildStatus":
        """宽松解析状态字符串（忽略大小写和首尾空白）"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            raise ValueError(f"unknown build status: {value!r}") from None


# ========== 状态分组 ==========

# 所有者可见（非临时）的状态
OWNER_VISIBLE_STATUSES: FrozenSet[BuildStatus] = frozenset(
    {
        BuildStatus.DRAFT,
        BuildStatus.PENDING_REVIEW,
        BuildStatus.PUBLISHED,
        BuildStatus.UNPUBLISHED,
    }
)

# 可原地编辑的状态，同时也是修订草稿的"未结束"状态
OWNER_EDITABLE_STATUSES: FrozenSet[BuildStatus] = frozenset(
    {BuildStatus.DRAFT, BuildStatus.PENDING_REVIEW, BuildStatus.UNPUBLISHED}
)
OPEN_REVISION_STATUSES = OWNER_EDITABLE_STATUSES

LINK_STATUSES: FrozenSet[BuildStatus] = frozenset({BuildStatus.TEMP, BuildStatus.SHARED})

SUBMITTABLE_STATUSES: FrozenSet[BuildStatus] = frozenset(
    {BuildStatus.DRAFT, BuildStatus.UNPUBLISHED}
)

DIRECT_PUBLISHABLE_STATUSES: FrozenSet[BuildStatus] = frozenset(
    {BuildStatus.DRAFT, BuildStatus.UNPUBLISHED, BuildStatus.PENDING_REVIEW}
)

UNPUBLISHABLE_STATUSES: FrozenSet[BuildStatus] = frozenset(
    {BuildStatus.PUBLISHED, BuildStatus.PENDING_REVIEW}
)

# 必须先下线才能删除
DELETE_BLOCKED_STATUSES = UNPUBLISHABLE_STATUSES


def is_owner_visible(status: BuildStatus) -> bool:
    return status in OWNER_VISIBLE_STATUSES


def is_owner_editable(status: BuildStatus) -> bool:
    return status in OWNER_EDITABLE_STATUSES


def is_publicly_visible(status: BuildStatus) -> bool:
    return status == BuildStatus.PUBLISHED


def is_link_status(status: BuildStatus) -> bool:
    return status in LINK_STATUSES


def is_deletable(status: BuildStatus) -> bool:
    return status in OWNER_VISIBLE_STATUSES and status not in DELETE_BLOCKED_STATUSES


def _status_sql_list(statuses) -> str:
    return ", ".join(f"'{s.value}'" for s in sorted(statuses, key=lambda s: s.value))


class GearType(str, enum.Enum):
    """零件类别"""

    FRAME = "frame"
    MOTOR = "motor"
    AIO = "aio"
    FC = "fc"
    ESC = "esc"
    STACK = "stack"
    RECEIVER = "receiver"
    VTX = "vtx"
    ANTENNA = "antenna"
    CAMERA = "camera"
    PROP = "prop"
    BATTERY = "battery"
    GPS = "gps"
    OTHER = "other"


def normalize_gear_type(value) -> str:
    """零件类别统一为小写、去空白；未知类别原样保留"""
    if isinstance(value, GearType):
        return value.value
    return str(value or "").strip().lower()


class ReactionType(str, enum.Enum):
    """点赞 / 点踩"""

    LIKE = "LIKE"
    DISLIKE = "DISLIKE"


def _new_id() -> str:
    return str(uuid.uuid4())


class Build(Base):
    """
    Build ORM 模型

    字段：
        id: Build ID（UUID）
        owner_user_id: 所有者用户 ID（匿名临时 Build 为空）
        status: 发布状态
        revision_of_build_id: 该行作为修订草稿时，指向对应的已发布 Build
        token: 临时 / 分享链接的密钥（仅 TEMP / SHARED）
        expires_at: 过期时间（仅 TEMP 有意义）
        title / description / build_video_url / flight_video_url: 内容字段
        source_aircraft_id: 由哪架飞机生成
        image_asset_id: 已审核图片资产 ID（字节存放在外部图片服务）
        moderation_reason: 审核拒绝原因
        published_at: 发布时间（仅 PUBLISHED 有值）

    索引：
        uq_builds_open_revision: 每个 (owner, 已发布 Build) 最多一份未结束的修订草稿
    """

    __tablename__ = "builds"

    id = Column(String(36), primary_key=True, default=_new_id)
    owner_user_id = Column(String(255), nullable=True, index=True)
    status = Column(
        Enum(BuildStatus, name="build_status", native_enum=False, length=32),
        nullable=False,
        index=True,
    )
    revision_of_build_id = Column(
        String(36), ForeignKey("builds.id", ondelete="CASCADE"), nullable=True, index=True
    )
    token = Column(String(128), nullable=True, unique=True)
    expires_at = Column(UTCDateTime, nullable=True)

    title = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=True)
    build_video_url = Column(String(2048), nullable=True)
    flight_video_url = Column(String(2048), nullable=True)
    source_aircraft_id = Column(String(64), nullable=True)
    image_asset_id = Column(String(64), nullable=True)
    moderation_reason = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)
    published_at = Column(UTCDateTime, nullable=True)

    parts = relationship(
        "BuildPart",
        back_populates="build",
        order_by=lambda: [BuildPart.gear_type, BuildPart.position, BuildPart.id],
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index(
            "uq_builds_open_revision",
            "owner_user_id",
            "revision_of_build_id",
            unique=True,
            postgresql_where=text(
                "revision_of_build_id IS NOT NULL "
                f"AND status IN ({_status_sql_list(OPEN_REVISION_STATUSES)})"
            ),
            sqlite_where=text(
                "revision_of_build_id IS NOT NULL "
                f"AND status IN ({_status_sql_list(OPEN_REVISION_STATUSES)})"
            ),
        ),
        Index("idx_builds_status_expires_at", "status", "expires_at"),
    )

    def __repr__(self):
        return f"<Build(id={self.id}, status={self.status}, owner_user_id={self.owner_user_id})>"


class BuildPart(Base):
    """Build 的一个零件槽位，随 Build 整体替换"""

    __tablename__ = "build_parts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    build_id = Column(
        String(36), ForeignKey("builds.id", ondelete="CASCADE"), nullable=False, index=True
    )
    gear_type = Column(String(32), nullable=False)
    catalog_item_id = Column(String(64), nullable=True)
    position = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    build = relationship("Build", back_populates="parts")

    def __repr__(self):
        return f"<BuildPart(build_id={self.build_id}, gear_type={self.gear_type}, position={self.position})>"


class BuildReaction(Base):
    """用户对已发布 Build 的反应，(build_id, user_id) 唯一"""

    __tablename__ = "build_reactions"

    build_id = Column(
        String(36), ForeignKey("builds.id", ondelete="CASCADE"), primary_key=True
    )
    user_id = Column(String(255), primary_key=True)
    reaction = Column(
        Enum(ReactionType, name="build_reaction", native_enum=False, length=16),
        nullable=False,
    )
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)


class DeclineFilter(str, enum.Enum):
    """审核列表按拒绝原因过滤"""

    ALL = "all"
    DECLINED = "declined"
    NOT_DECLINED = "not_declined"
