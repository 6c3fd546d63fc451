"""
Hangar: Build 生命周期与审核流程引擎
"""

__version__ = "0.1.0"
