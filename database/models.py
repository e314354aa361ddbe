"""
Mind Map Platform - Database Models

SQLAlchemy models for persistent storage
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Dict, Any

from sqlalchemy import (
    Column, String, Text, Float, Boolean, DateTime, ForeignKey, JSON,
    UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

MIND_MAP_ACTIVE = 'active'
MIND_MAP_DELETED = 'deleted'


def _utcnow() -> datetime:
    # Stored naive, always UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: datetime) -> Any:
    return value.isoformat() if value else None


# ==================== Mind Map Models ====================

class MindMap(Base):
    """Mind map - a user-owned container for a graph of nodes and edges"""
    __tablename__ = 'mind_maps'

    id = Column(String(64), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True, default='')
    is_public = Column(Boolean, default=False, nullable=False)

    # Status
    status = Column(String(20), default=MIND_MAP_ACTIVE, nullable=False)  # active, deleted

    # Timestamps
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships (rows are removed by the database cascade)
    nodes = relationship('Node', back_populates='mind_map', passive_deletes=True)
    edges = relationship('Edge', back_populates='mind_map', passive_deletes=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description or '',
            'is_public': bool(self.is_public),
            'status': self.status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Node(Base):
    """
    Node - a positioned, content-bearing vertex

    `parent_id` forms a forest independent of edges; deleting a parent
    deletes its children.
    """
    __tablename__ = 'nodes'

    id = Column(String(64), primary_key=True, default=_new_id)
    mind_map_id = Column(String(64), ForeignKey('mind_maps.id', ondelete='CASCADE'), nullable=False, index=True)
    parent_id = Column(String(64), ForeignKey('nodes.id', ondelete='CASCADE'), nullable=True, index=True)

    content = Column(Text, nullable=False)
    position_x = Column(Float, nullable=False, default=0.0)
    position_y = Column(Float, nullable=False, default=0.0)
    node_type = Column(String(50), default='default')

    # Opaque JSON blobs
    style_data = Column(JSON, default=dict)
    metadata_ = Column('metadata', JSON, default=dict)

    # Timestamps
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    mind_map = relationship('MindMap', back_populates='nodes')
    parent = relationship('Node', remote_side=[id], back_populates='children')
    children = relationship('Node', back_populates='parent', passive_deletes=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'mind_map_id': self.mind_map_id,
            'parent_id': self.parent_id,
            'content': self.content,
            'position_x': self.position_x,
            'position_y': self.position_y,
            'node_type': self.node_type,
            'style_data': self.style_data if self.style_data is not None else {},
            'metadata': self.metadata_ if self.metadata_ is not None else {},
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Edge(Base):
    """Edge - directed, typed connection between two nodes of one mind map"""
    __tablename__ = 'edges'
    __table_args__ = (
        UniqueConstraint('mind_map_id', 'source_id', 'target_id', name='uq_edges_connection'),
    )

    id = Column(String(64), primary_key=True, default=_new_id)
    mind_map_id = Column(String(64), ForeignKey('mind_maps.id', ondelete='CASCADE'), nullable=False, index=True)
    source_id = Column(String(64), ForeignKey('nodes.id', ondelete='CASCADE'), nullable=False, index=True)
    target_id = Column(String(64), ForeignKey('nodes.id', ondelete='CASCADE'), nullable=False, index=True)

    edge_type = Column(String(50), default='default')
    style_data = Column(JSON, default=dict)

    created_at = Column(DateTime, default=_utcnow)

    # Relationships
    mind_map = relationship('MindMap', back_populates='edges')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'mind_map_id': self.mind_map_id,
            'source_id': self.source_id,
            'target_id': self.target_id,
            'edge_type': self.edge_type,
            'style_data': self.style_data if self.style_data is not None else {},
            'created_at': _iso(self.created_at),
        }


# ==================== Credential Models ====================

class APIKey(Base):
    """Per-user third-party API key, stored encrypted; one per (user, service)"""
    __tablename__ = 'api_keys'
    __table_args__ = (
        UniqueConstraint('user_id', 'service', name='uq_api_keys_user_service'),
        Index('ix_api_keys_user_id', 'user_id'),
    )

    id = Column(String(64), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=False)
    service = Column(String(50), nullable=False)  # openai, ...
    encrypted_key = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        # encrypted_key is never exposed
        return {
            'id': self.id,
            'user_id': self.user_id,
            'service': self.service,
            'is_active': bool(self.is_active),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
