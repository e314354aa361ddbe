"""
Mind Map Platform - Database Module

Provides persistent storage with SQLite (dev) / PostgreSQL (prod)
"""

from .models import Base, MindMap, Node, Edge, APIKey, MIND_MAP_ACTIVE, MIND_MAP_DELETED
from .db_manager import DatabaseManager, get_db_manager, init_db

__all__ = [
    'Base', 'MindMap', 'Node', 'Edge', 'APIKey',
    'MIND_MAP_ACTIVE', 'MIND_MAP_DELETED',
    'DatabaseManager', 'get_db_manager', 'init_db'
]
