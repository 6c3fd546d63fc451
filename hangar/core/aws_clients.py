"""
AWS 客户端（S3）
使用 boto3（同步）客户端，进程内复用

图片字节由外部图片资产服务写入 S3，这里只负责按 asset id 清理对象
"""

from functools import lru_cache
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import EndpointConnectionError, ConnectTimeoutError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from hangar.core.logging import get_logger

logger = get_logger(__name__)

# 可重试的网络/基础设施异常
RETRYABLE_EXCEPTIONS = (
    EndpointConnectionError,
    ConnectTimeoutError,
)

# AWS 操作重试装饰器：最多重试3次，指数退避等待
aws_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
    reraise=True,
)

# boto3 客户端配置
BOTO3_CONFIG = Config(
    max_pool_connections=25,
    connect_timeout=5,
    read_timeout=30,
    retries={"max_attempts": 3, "mode": "adaptive"},
)


@lru_cache(maxsize=1)
def _get_s3_client(region: str):
    """获取缓存的 S3 client"""
    logger.info("boto3_s3_client_created", region=region)
    return boto3.client("s3", region_name=region, config=BOTO3_CONFIG)


class AWSClients:
    """AWS 客户端管理器（使用 boto3）"""

    def __init__(self, region: str):
        self.region = region
        self.s3 = _get_s3_client(region)

    @aws_retry
    def s3_delete_object(self, bucket: str, key: str) -> None:
        """删除 S3 对象（对象不存在时 S3 同样返回成功）"""
        self.s3.delete_object(Bucket=bucket, Key=key)
        logger.info("s3_object_deleted", bucket=bucket, key=key)


# 全局实例
_aws_clients: Optional[AWSClients] = None


def get_aws_clients() -> AWSClients:
    """获取 AWS 客户端实例（懒加载）"""
    global _aws_clients
    if _aws_clients is None:
        from hangar.core.config import get_settings

        settings = get_settings()
        _aws_clients = AWSClients(region=settings.AWS_REGION)
    return _aws_clients
