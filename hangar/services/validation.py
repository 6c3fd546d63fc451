"""
发布前校验

校验结果作为 ValidationResult 返回，不抛异常；校验失败时调用方不修改任何数据
"""

from typing import Iterable, Set

from hangar.models.build import GearType
from hangar.schemas.build import BuildPartView, BuildView, ValidationResult
from hangar.services.catalog import CATALOG_STATUS_PUBLISHED

CODE_MISSING_REQUIRED = "missing_required"
CODE_NOT_PUBLISHED = "not_published"

POWER_STACK_CATEGORY = "power-stack"

# 每个 Build 必须至少有一个零件的类别
REQUIRED_CATEGORIES = (
    GearType.FRAME.value,
    GearType.MOTOR.value,
    GearType.RECEIVER.value,
    GearType.VTX.value,
)

# 由飞机生成的 Build，这些类别的零件必须对应已发布的目录条目
CATALOG_CHECKED_CATEGORIES = REQUIRED_CATEGORIES + (
    GearType.AIO.value,
    GearType.STACK.value,
    GearType.FC.value,
    GearType.ESC.value,
)


def _present_categories(parts: Iterable[BuildPartView]) -> Set[str]:
    return {
        p.gear_type
        for p in parts
        if p.gear_type and (p.catalog_item_id or "").strip()
    }


def _has_power_stack(categories: Set[str]) -> bool:
    """AIO、Stack、或 FC + ESC 任意一种即可"""
    if GearType.AIO.value in categories or GearType.STACK.value in categories:
        return True
    return GearType.FC.value in categories and GearType.ESC.value in categories


def is_build_verified(build: BuildView) -> bool:
    """必需类别齐全且动力系统完整"""
    categories = _present_categories(build.parts)
    if any(c not in categories for c in REQUIRED_CATEGORIES):
        return False
    return _has_power_stack(categories)


def validate_for_publish(build: BuildView) -> ValidationResult:
    """
    发布校验

    规则：
    1. 描述和图片必填
    2. frame / motor / receiver / vtx 每类至少一个零件
    3. 动力系统：aio、stack、或 fc + esc
    4. 有 source_aircraft_id 时，上述类别中已有的零件必须是已发布的目录条目
    """
    result = ValidationResult()

    if not (build.description or "").strip():
        result.add("description", CODE_MISSING_REQUIRED, "description is required")
    if not (build.image_asset_id or "").strip():
        result.add("image", CODE_MISSING_REQUIRED, "an approved image is required")

    categories = _present_categories(build.parts)
    for category in REQUIRED_CATEGORIES:
        if category not in categories:
            result.add(category, CODE_MISSING_REQUIRED, f"at least one {category} is required")

    if not _has_power_stack(categories):
        result.add(
            POWER_STACK_CATEGORY,
            CODE_MISSING_REQUIRED,
            "an aio, a stack, or both an fc and an esc are required",
        )

    if (build.source_aircraft_id or "").strip():
        for part in build.parts:
            if part.gear_type not in CATALOG_CHECKED_CATEGORIES:
                continue
            if not (part.catalog_item_id or "").strip():
                continue
            item = part.catalog_item
            if item is not None and item.status == CATALOG_STATUS_PUBLISHED:
                continue
            if not result.has(part.gear_type, CODE_NOT_PUBLISHED):
                result.add(
                    part.gear_type,
                    CODE_NOT_PUBLISHED,
                    f"{part.gear_type} {part.catalog_item_id} is not a published catalog item",
                )

    return result
