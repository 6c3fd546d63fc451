"""
业务服务层
"""

from hangar.services.build_service import BuildService
from hangar.services.temp_links import TempLinkService

__all__ = ["BuildService", "TempLinkService"]
