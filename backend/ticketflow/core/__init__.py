"""
Ticketflow - Core Package
=========================

Models, configuration, persistence and the workflow/session orchestration core.
"""

from ticketflow.core.config import settings
from ticketflow.core.database import Base, get_db

__all__ = ["Base", "get_db", "settings"]
