"""ORM models package.

Import all models here so that SQLAlchemy's metadata is fully populated
when Alembic runs autogenerate.
"""

from src.models.generation import Deck, DeckSlide, GenerationJob, JobStatus

__all__ = [
    "Deck",
    "DeckSlide",
    "GenerationJob",
    "JobStatus",
]
