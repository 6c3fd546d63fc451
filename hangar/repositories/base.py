"""
Repository 层基础模块

Repository 只负责数据访问：
1. 所有写操作放在 transaction() 中，成功提交、失败回滚
2. 读取未命中返回 None，由 Service 层决定是否抛出 BuildNotFoundError
3. 条件更新（按 owner / status 过滤）命中 0 行视为未找到
"""

from abc import ABC, abstractmethod
from typing import Generic, List, Optional, Tuple, TypeVar

from sqlalchemy.orm import Query, Session

# 泛型类型
T = TypeVar("T")  # 模型类型
ID = TypeVar("ID")  # 主键类型

# 分页上限
MAX_PAGE_SIZE = 100


def clamp_page(limit: Optional[int], offset: Optional[int], default_limit: int) -> Tuple[int, int]:
    """规范分页参数：limit<=0 使用默认值，最大 100；offset<0 视为 0"""
    if limit is None or limit <= 0:
        limit = default_limit
    limit = min(limit, MAX_PAGE_SIZE)
    if offset is None or offset < 0:
        offset = 0
    return limit, offset


class BaseRepository(ABC, Generic[T, ID]):
    """
    Repository 基类

    提供通用的读取接口，写操作由子类按业务语义实现
    """

    def __init__(self, db: Session):
        self.db = db

    @abstractmethod
    def get_by_id(self, id: ID) -> Optional[T]:
        """根据 ID 获取单个实体"""
        pass

    @abstractmethod
    def exists(self, id: ID) -> bool:
        """检查实体是否存在"""
        pass


class SQLAlchemyRepository(BaseRepository[T, ID]):
    """
    SQLAlchemy 实现的 Repository 基类

    子类只需指定 model_class 即可获得基础读取功能
    """

    model_class: type = None  # 子类必须指定

    def __init__(self, db: Session):
        super().__init__(db)
        if self.model_class is None:
            raise ValueError("model_class must be specified in subclass")

    def query(self) -> Query:
        return self.db.query(self.model_class)

    def get_by_id(self, id: ID) -> Optional[T]:
        """根据主键获取实体"""
        if id is None:
            return None
        return self.db.get(self.model_class, id)

    def exists(self, id: ID) -> bool:
        """检查实体是否存在"""
        return self.get_by_id(id) is not None

    def paginate(self, query: Query, limit: int, offset: int) -> Tuple[List[T], int]:
        """分页查询，返回 (当前页, 总数)"""
        total = query.order_by(None).count()
        return query.offset(offset).limit(limit).all(), total
