"""
Build Pydantic 模型
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from hangar.models.build import BuildStatus, ReactionType, normalize_gear_type


class BuildPartInput(BaseModel):
    """
    零件输入

    gear_type 为空或 catalog_item_id 为空白的条目在替换零件列表时会被跳过
    """

    gear_type: str = Field(default="", description="零件类别，例如 frame / motor")
    catalog_item_id: Optional[str] = Field(None, description="目录条目 ID")
    position: int = Field(default=0, description="同类别内的排序")
    notes: Optional[str] = Field(None, description="备注")

    @field_validator("gear_type", mode="before")
    @classmethod
    def _normalize_gear_type(cls, v):
        return normalize_gear_type(v)


class CreateBuildParams(BaseModel):
    """创建 Build 的参数"""

    title: str = Field(default="", description="标题")
    description: Optional[str] = Field(None, description="描述")
    build_video_url: Optional[str] = Field(None, description="组装视频 URL")
    flight_video_url: Optional[str] = Field(None, description="飞行视频 URL")
    source_aircraft_id: Optional[str] = Field(None, description="来源飞机 ID")
    parts: List[BuildPartInput] = Field(default_factory=list, description="零件列表")


class UpdateBuildParams(BaseModel):
    """
    更新 Build 的参数

    字段为 None 表示不修改；parts 为 None 表示保留原零件，为 [] 表示清空
    """

    title: Optional[str] = None
    description: Optional[str] = None
    build_video_url: Optional[str] = None
    flight_video_url: Optional[str] = None
    parts: Optional[List[BuildPartInput]] = None


class CatalogItemView(BaseModel):
    """目录条目展示信息（来自外部目录服务）"""

    id: str
    gear_type: str
    brand: str = ""
    model: str = ""
    variant: Optional[str] = None
    price: Optional[Decimal] = None
    image_url: Optional[str] = None
    status: str


class BuildPartView(BaseModel):
    """零件展示模型"""

    gear_type: str
    catalog_item_id: Optional[str] = None
    position: int = 0
    notes: Optional[str] = None
    catalog_item: Optional[CatalogItemView] = None

    model_config = {"from_attributes": True}


class BuildView(BaseModel):
    """
    Build 展示模型

    所有者读取已发布 Build 时，内容字段优先取修订草稿，
    staged_revision_id / staged_revision_status 指明当前的修订草稿
    """

    id: str
    owner_user_id: Optional[str] = None
    status: BuildStatus
    revision_of_build_id: Optional[str] = None
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    title: str = ""
    description: Optional[str] = None
    build_video_url: Optional[str] = None
    flight_video_url: Optional[str] = None
    source_aircraft_id: Optional[str] = None
    image_asset_id: Optional[str] = None
    moderation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    published_at: Optional[datetime] = None
    parts: List[BuildPartView] = Field(default_factory=list)

    like_count: int = 0
    dislike_count: int = 0
    viewer_reaction: Optional[ReactionType] = None

    staged_revision_id: Optional[str] = None
    staged_revision_status: Optional[BuildStatus] = None
    verified: bool = False

    model_config = {"from_attributes": True}


class BuildListResponse(BaseModel):
    """Build 列表（分页）"""

    builds: List[BuildView]
    total_count: int
    limit: int
    offset: int


class TempBuildResponse(BaseModel):
    """临时 / 分享 Build 的返回：Build + 访问 token + 分享链接"""

    build: BuildView
    token: str
    url: str


class ValidationIssue(BaseModel):
    """发布校验的单条错误"""

    category: str
    code: str
    message: str = ""


class ValidationResult(BaseModel):
    """发布校验结果（返回而非抛出）"""

    valid: bool = True
    errors: List[ValidationIssue] = Field(default_factory=list)

    def add(self, category: str, code: str, message: str = "") -> None:
        self.errors.append(ValidationIssue(category=category, code=code, message=message))
        self.valid = False

    def has(self, category: str, code: str) -> bool:
        return any(e.category == category and e.code == code for e in self.errors)


class TransitionResult(BaseModel):
    """
    状态流转结果

    applied=False 表示发布校验未通过、数据未被修改，此时 build 为操作前的状态
    """

    build: BuildView
    validation: ValidationResult
    applied: bool = True
