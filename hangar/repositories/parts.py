"""
零件列表管理

零件列表总是整体替换（先删后插），调用方负责把它放进与 Build 更新相同的事务中
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from hangar.core.logging import get_logger
from hangar.models.build import BuildPart
from hangar.schemas.build import BuildPartInput

logger = get_logger(__name__)


def _clean_notes(notes: Optional[str]) -> Optional[str]:
    if notes is None:
        return None
    notes = notes.strip()
    return notes or None


def normalize_parts(parts: Iterable[BuildPartInput]) -> List[BuildPartInput]:
    """
    清洗零件输入

    - gear_type 为空或 catalog_item_id 为空白的条目被跳过
    - position 小于 0 时按 0 处理
    - 字符串去首尾空白，空备注存为 NULL
    """
    cleaned = []
    for part in parts or []:
        gear_type = (part.gear_type or "").strip().lower()
        item_id = (part.catalog_item_id or "").strip()
        if not gear_type or not item_id:
            continue
        cleaned.append(
            BuildPartInput(
                gear_type=gear_type,
                catalog_item_id=item_id,
                position=max(part.position or 0, 0),
                notes=_clean_notes(part.notes),
            )
        )
    return cleaned


def replace_parts(db: Session, build_id: str, parts: Iterable[BuildPartInput]) -> int:
    """删除 Build 的全部零件并插入新列表，返回写入条数"""
    db.query(BuildPart).filter(BuildPart.build_id == build_id).delete(
        synchronize_session=False
    )
    cleaned = normalize_parts(parts)
    for part in cleaned:
        db.add(
            BuildPart(
                build_id=build_id,
                gear_type=part.gear_type,
                catalog_item_id=part.catalog_item_id,
                position=part.position,
                notes=part.notes,
            )
        )
    db.flush()
    logger.debug("build_parts_replaced", build_id=build_id, count=len(cleaned))
    return len(cleaned)


def delete_parts(db: Session, build_ids: Sequence[str]) -> int:
    if not build_ids:
        return 0
    return (
        db.query(BuildPart)
        .filter(BuildPart.build_id.in_(list(build_ids)))
        .delete(synchronize_session=False)
    )


def load_parts(db: Session, build_ids: Sequence[str]) -> Dict[str, List[BuildPart]]:
    """批量读取零件，按 (gear_type, position, id) 排序"""
    result: Dict[str, List[BuildPart]] = defaultdict(list)
    if not build_ids:
        return result
    rows = (
        db.query(BuildPart)
        .filter(BuildPart.build_id.in_(list(build_ids)))
        .order_by(BuildPart.build_id, BuildPart.gear_type, BuildPart.position, BuildPart.id)
        .all()
    )
    for row in rows:
        result[row.build_id].append(row)
    return result


def part_inputs_from_parts(parts: Iterable[BuildPart]) -> List[BuildPartInput]:
    """把已存储的零件转换回输入格式（复制零件列表时使用）"""
    return [
        BuildPartInput(
            gear_type=p.gear_type,
            catalog_item_id=p.catalog_item_id,
            position=p.position,
            notes=p.notes,
        )
        for p in parts
    ]


def copy_parts(db: Session, source_build_id: str, target_build_id: str) -> int:
    """用 source 的零件列表替换 target 的零件列表"""
    source = load_parts(db, [source_build_id]).get(source_build_id, [])
    return replace_parts(db, target_build_id, part_inputs_from_parts(source))
