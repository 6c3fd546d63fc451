"""
目录服务接口（外部协作方）

引擎只通过 catalog_item_id 引用目录条目，展示信息和发布状态由目录服务提供
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from hangar.schemas.build import CatalogItemView

CATALOG_STATUS_PUBLISHED = "published"
CATALOG_STATUS_PENDING = "pending"


class CatalogClient(ABC):
    """目录服务抽象"""

    @abstractmethod
    def get_items(self, item_ids: Iterable[str]) -> Dict[str, CatalogItemView]:
        """批量解析目录条目，未找到的 ID 不出现在结果中"""
        pass

    @abstractmethod
    def search_item_ids(self, gear_type: str, text: str) -> List[str]:
        """按品牌 / 型号 / 变体模糊匹配某一类别的目录条目 ID"""
        pass


class StaticCatalog(CatalogClient):
    """内存目录实现（本地开发 / 测试使用）"""

    def __init__(self, items: Optional[Iterable[CatalogItemView]] = None):
        self._items: Dict[str, CatalogItemView] = {}
        for item in items or []:
            self.add(item)

    def add(self, item: CatalogItemView) -> None:
        self._items[item.id] = item

    def get_items(self, item_ids: Iterable[str]) -> Dict[str, CatalogItemView]:
        return {i: self._items[i] for i in item_ids if i in self._items}

    def search_item_ids(self, gear_type: str, text: str) -> List[str]:
        needle = (text or "").strip().lower()
        matches = []
        for item in self._items.values():
            if item.gear_type != gear_type:
                continue
            haystack = " ".join(filter(None, [item.brand, item.model, item.variant])).lower()
            if needle in haystack:
                matches.append(item.id)
        return matches
