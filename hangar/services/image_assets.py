"""
图片资产服务接口（外部协作方）

图片字节由图片服务审核并保存，Build 只记录 image_asset_id；
替换或删除 Build 图片后，旧的资产由这里清理
"""

from abc import ABC, abstractmethod

from hangar.core.aws_clients import AWSClients, get_aws_clients
from hangar.core.logging import get_logger

logger = get_logger(__name__)


class ImageAssetStore(ABC):
    """图片资产存储抽象"""

    @abstractmethod
    def delete_asset(self, asset_id: str) -> None:
        """删除不再被引用的图片资产"""
        pass


class S3ImageAssetStore(ImageAssetStore):
    """S3 上的图片资产：s3://{bucket}/{prefix}/{asset_id}"""

    def __init__(self, bucket: str, prefix: str = "build-images", aws: AWSClients = None):
        if not bucket:
            raise ValueError("image asset bucket is required")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.aws = aws or get_aws_clients()

    def _key(self, asset_id: str) -> str:
        # 与 S3 URI 解析保持一致：拒绝路径穿越
        if not asset_id or ".." in asset_id or "/" in asset_id:
            raise ValueError(f"Invalid image asset id: {asset_id}")
        return f"{self.prefix}/{asset_id}" if self.prefix else asset_id

    def delete_asset(self, asset_id: str) -> None:
        key = self._key(asset_id)
        logger.info("image_asset_delete", bucket=self.bucket, key=key)
        self.aws.s3_delete_object(self.bucket, key)
