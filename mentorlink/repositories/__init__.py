from mentorlink.repositories.base import SessionRepository, RepositoryError, RepositoryConflict
from mentorlink.repositories.sql_repository import SqlSessionRepository

__all__ = ["SessionRepository", "RepositoryError", "RepositoryConflict", "SqlSessionRepository"]
