"""
Build 领域异常

未找到 / 非本人 / 状态不匹配 统一为 BuildNotFoundError，调用方无法区分三者
"""


class BuildError(Exception):
    """Build 相关异常基类"""

    pass


class BuildNotFoundError(BuildError):
    """Build 不存在、不属于当前用户或状态不允许该操作"""

    def __init__(self, message: str = "build not found"):
        super().__init__(message)


class BuildInputError(BuildError, ValueError):
    """调用方参数错误（在访问数据库之前失败）"""

    pass


class BuildDeletionBlockedError(BuildError):
    """已发布 / 待审核的 Build 不能直接删除"""

    def __init__(self, message: str = "build must be unpublished before deletion"):
        super().__init__(message)


class RevisionConflictError(BuildError):
    """并发创建修订草稿冲突，且无法读取到胜出方的修订"""

    pass


class PublishRejectedError(BuildError):
    """发布校验未通过；在发布事务内抛出，事务回滚，数据不变"""

    def __init__(self, build, validation):
        super().__init__("build failed publish validation")
        self.build = build
        self.validation = validation
