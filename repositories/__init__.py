"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import (
    BaseRepository,
    PaginationParams,
    PaginatedResult,
    SortOrder
)
from .contact_repository import ContactRepository
from .segment_repository import SegmentRepository
from .campaign_repository import CampaignRepository
from .campaign_execution_repository import CampaignExecutionRepository

__all__ = [
    'BaseRepository',
    'PaginationParams',
    'PaginatedResult',
    'SortOrder',
    'ContactRepository',
    'SegmentRepository',
    'CampaignRepository',
    'CampaignExecutionRepository',
]
