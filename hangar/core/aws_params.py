"""
AWS Parameter Store 参数加载器
"""

from typing import Dict

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

logger = structlog.get_logger(__name__)


def load_parameters_from_aws_sync(
    path: str = "/hangar/database", region: str = "us-west-2"
) -> Dict[str, str]:
    """
    从 AWS Systems Manager Parameter Store 批量加载参数

    Args:
        path: Parameter Store 路径前缀
        region: AWS Region

    Returns:
        参数字典，key 为参数名（不含路径前缀），value 为参数值

    Example:
        /hangar/database/database_url -> {"database_url": "postgresql://..."}
    """
    ssm = boto3.client("ssm", region_name=region)

    try:
        parameters = {}
        paginator = ssm.get_paginator("get_parameters_by_path")

        for page in paginator.paginate(Path=path, Recursive=True, WithDecryption=True):
            for param in page["Parameters"]:
                # /hangar/database/images/bucket -> images_bucket
                name = param["Name"].replace(path, "").lstrip("/").replace("/", "_")
                parameters[name] = param["Value"]

        # 只记录加载的参数数量，不记录任何具体值
        logger.info(
            "aws_params_loaded",
            path=path,
            region=region,
            param_count=len(parameters),
        )
        return parameters

    except (BotoCoreError, ClientError) as e:
        logger.error(
            "aws_params_load_failed",
            path=path,
            region=region,
            error=str(e),
        )
        return {}
