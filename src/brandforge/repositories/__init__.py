"""Repository layer for the generation backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from brandforge.repositories.generation import GenerationRepository
from brandforge.repositories.job import JobRepository
from brandforge.repositories.settlement import SettlementRepository
from brandforge.repositories.user import UserRepository

__all__ = [
    "UserRepository",
    "GenerationRepository",
    "JobRepository",
    "SettlementRepository",
]
