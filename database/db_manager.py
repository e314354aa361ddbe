"""
Mind Map Platform - Database Manager

Handles all graph store operations with SQLAlchemy: mind maps, nodes,
edges and encrypted API key records, with per-user ownership checks.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, List, Optional, Any, Iterable, Iterator, Union

from sqlalchemy import create_engine, event, or_, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, scoped_session
from sqlalchemy.pool import StaticPool

from config.app_config import get_config
from core.exceptions import (
    MindMapError, ValidationError, Unauthorized, NotFound,
    StoreError, DuplicateEdgeError
)
from schemas.idea_schema import PositionUpdate

from .models import (
    Base, MindMap, Node, Edge, APIKey,
    MIND_MAP_ACTIVE, MIND_MAP_DELETED
)

logger = logging.getLogger(__name__)


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _as_position_update(item: Union[PositionUpdate, Dict[str, Any]]) -> PositionUpdate:
    if isinstance(item, PositionUpdate):
        return item
    try:
        return PositionUpdate(node_id=item['node_id'], x=float(item['x']), y=float(item['y']))
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid position update: {item!r}") from e


class DatabaseManager:
    """
    Database manager for Mind Map Platform

    Supports SQLite (development, tests) and PostgreSQL (production).
    Every public operation opens its own session unless one is passed in;
    a passed-in session is flushed but never committed or closed, so the
    caller owns the transaction.
    """

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        """
        Initialize database manager

        Args:
            database_url: Database connection URL. If None, uses DATABASE_URL
                or SQLite in the data folder.
            echo: Log emitted SQL (defaults to DB_ECHO)
        """
        db_config = get_config().database
        if database_url is None:
            database_url = db_config.url
        if echo is None:
            echo = db_config.echo

        self.database_url = database_url
        is_sqlite = database_url.startswith("sqlite")

        engine_kwargs: Dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise each session sees an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)

        if is_sqlite:
            # SQLite ignores ON DELETE CASCADE unless foreign keys are enabled per connection
            @event.listens_for(self.engine, "connect")
            def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        # Create session factory
        session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.Session = scoped_session(session_factory)

        # Initialize database
        self._init_database()

    def _init_database(self):
        """Create all tables"""
        Base.metadata.create_all(self.engine)
        logger.info(f"Database ready: {self.engine.url.render_as_string(hide_password=True)}")

    def get_session(self) -> Session:
        """Get a database session"""
        return self.Session()

    def close_session(self, session: Session):
        """Close a database session"""
        session.close()

    def dispose(self):
        """Release pooled connections"""
        self.Session.remove()
        self.engine.dispose()

    @contextmanager
    def _transaction(self, session: Optional[Session] = None) -> Iterator[Session]:
        """
        Run a unit of work.

        Platform errors pass through unchanged; SQLAlchemy errors become
        StoreError. Only an owned session is committed, rolled back and closed.
        """
        should_close = session is None
        session = session or self.get_session()

        try:
            yield session
            if should_close:
                session.commit()
            else:
                session.flush()
        except MindMapError:
            if should_close:
                session.rollback()
            raise
        except SQLAlchemyError as e:
            if should_close:
                session.rollback()
            logger.error(f"Database operation failed: {e}")
            raise StoreError(f"Database operation failed: {e}") from e
        finally:
            if should_close:
                session.close()

    # ==================== Access Checks ====================

    def _load_mind_map(self, session: Session, mind_map_id: str) -> MindMap:
        mind_map = session.query(MindMap).filter_by(id=mind_map_id).first()
        if mind_map is None or mind_map.status == MIND_MAP_DELETED:
            raise NotFound(f"Mind map not found: {mind_map_id}")
        return mind_map

    def _require_owner(self, session: Session, mind_map_id: str, user_id: str) -> MindMap:
        mind_map = self._load_mind_map(session, mind_map_id)
        if mind_map.user_id != user_id:
            raise Unauthorized(f"User {user_id} does not own mind map {mind_map_id}")
        return mind_map

    def _require_reader(self, session: Session, mind_map_id: str, user_id: Optional[str]) -> MindMap:
        mind_map = self._load_mind_map(session, mind_map_id)
        if user_id is not None and mind_map.user_id != user_id and not mind_map.is_public:
            raise Unauthorized(f"User {user_id} may not read mind map {mind_map_id}")
        return mind_map

    def _load_node(self, session: Session, node_id: str) -> Node:
        node = session.query(Node).filter_by(id=node_id).first()
        if node is None:
            raise NotFound(f"Node not found: {node_id}")
        return node

    def _load_edge(self, session: Session, edge_id: str) -> Edge:
        edge = session.query(Edge).filter_by(id=edge_id).first()
        if edge is None:
            raise NotFound(f"Edge not found: {edge_id}")
        return edge

    # ==================== Mind Map Operations ====================

    def create_mind_map(self, user_id: str, title: str, description: str = "",
                        is_public: bool = False, session: Optional[Session] = None) -> MindMap:
        """Create a mind map owned by `user_id`"""
        if _is_blank(user_id):
            raise ValidationError("user_id is required")
        if _is_blank(title):
            raise ValidationError("title is required")

        with self._transaction(session) as s:
            mind_map = MindMap(
                user_id=user_id,
                title=title.strip(),
                description=description or "",
                is_public=bool(is_public),
                status=MIND_MAP_ACTIVE,
            )
            s.add(mind_map)
        return mind_map

    def get_mind_map(self, mind_map_id: str, user_id: Optional[str] = None,
                     session: Optional[Session] = None) -> MindMap:
        """
        Get a mind map.

        Without `user_id` no access check is made; with it the caller must
        own the map or the map must be public.
        """
        with self._transaction(session) as s:
            return self._require_reader(s, mind_map_id, user_id)

    def get_mind_map_with_details(self, mind_map_id: str, user_id: str,
                                  session: Optional[Session] = None) -> Dict[str, Any]:
        """Get a mind map together with all of its nodes and edges"""
        with self._transaction(session) as s:
            mind_map = self._require_reader(s, mind_map_id, user_id)
            nodes = s.query(Node).filter_by(mind_map_id=mind_map_id).order_by(Node.created_at).all()
            edges = s.query(Edge).filter_by(mind_map_id=mind_map_id).order_by(Edge.created_at).all()
            return {'mind_map': mind_map, 'nodes': nodes, 'edges': edges}

    def list_mind_maps(self, user_id: str, session: Optional[Session] = None) -> List[MindMap]:
        """Caller's non-deleted mind maps, most recently updated first"""
        with self._transaction(session) as s:
            return (
                s.query(MindMap)
                .filter(MindMap.user_id == user_id, MindMap.status != MIND_MAP_DELETED)
                .order_by(desc(MindMap.updated_at), desc(MindMap.created_at))
                .all()
            )

    def update_mind_map(self, mind_map_id: str, user_id: str, title: Optional[str] = None,
                        description: Optional[str] = None, is_public: Optional[bool] = None,
                        status: Optional[str] = None, session: Optional[Session] = None) -> MindMap:
        """Update a mind map; empty or None fields keep their current value"""
        with self._transaction(session) as s:
            mind_map = self._require_owner(s, mind_map_id, user_id)
            if title:
                mind_map.title = title
            if description:
                mind_map.description = description
            if is_public is not None:
                mind_map.is_public = bool(is_public)
            if status:
                mind_map.status = status
        return mind_map

    def delete_mind_map(self, mind_map_id: str, user_id: str,
                        session: Optional[Session] = None) -> bool:
        """Soft delete: the map is hidden but its rows are kept"""
        with self._transaction(session) as s:
            mind_map = self._require_owner(s, mind_map_id, user_id)
            mind_map.status = MIND_MAP_DELETED
        logger.info(f"Mind map {mind_map_id} soft-deleted by {user_id}")
        return True

    # ==================== Node Operations ====================

    def create_node(self, mind_map_id: str, user_id: str, content: str,
                    position_x: float = 0.0, position_y: float = 0.0,
                    parent_id: Optional[str] = None, node_type: str = "default",
                    style_data: Optional[Dict[str, Any]] = None,
                    metadata: Optional[Dict[str, Any]] = None,
                    session: Optional[Session] = None) -> Node:
        """Create a node in a mind map owned by `user_id`"""
        if _is_blank(mind_map_id):
            raise ValidationError("mind_map_id is required")
        if _is_blank(content):
            raise ValidationError("content is required")

        with self._transaction(session) as s:
            self._require_owner(s, mind_map_id, user_id)
            if parent_id:
                parent = s.query(Node).filter_by(id=parent_id, mind_map_id=mind_map_id).first()
                if parent is None:
                    raise NotFound(f"Parent node {parent_id} not found in mind map {mind_map_id}")

            node = Node(
                mind_map_id=mind_map_id,
                parent_id=parent_id or None,
                content=content,
                position_x=float(position_x),
                position_y=float(position_y),
                node_type=node_type or "default",
                style_data=style_data if style_data is not None else {},
                metadata_=metadata if metadata is not None else {},
            )
            s.add(node)
        return node

    def get_node(self, node_id: str, user_id: Optional[str] = None, session: Optional[Session] = None) -> Node:
        """Get a node; with `user_id` the caller must be able to read its map"""
        with self._transaction(session) as s:
            node = self._load_node(s, node_id)
            self._require_reader(s, node.mind_map_id, user_id)
            return node

    def list_nodes(self, mind_map_id: str, user_id: str, session: Optional[Session] = None) -> List[Node]:
        with self._transaction(session) as s:
            self._require_reader(s, mind_map_id, user_id)
            return s.query(Node).filter_by(mind_map_id=mind_map_id).order_by(Node.created_at).all()

    def update_node(self, node_id: str, user_id: str, content: str = "",
                    position_x: float = 0.0, position_y: float = 0.0, node_type: str = "",
                    style_data: Optional[Dict[str, Any]] = None,
                    metadata: Optional[Dict[str, Any]] = None,
                    session: Optional[Session] = None) -> Node:
        """
        Update a node.

        Empty strings, 0.0 coordinates (per axis) and None blobs keep the
        stored value, so a node cannot be moved back to exactly 0 this way;
        use batch_update_positions for that.
        """
        with self._transaction(session) as s:
            node = self._load_node(s, node_id)
            self._require_owner(s, node.mind_map_id, user_id)

            if content:
                node.content = content
            if position_x:
                node.position_x = float(position_x)
            if position_y:
                node.position_y = float(position_y)
            if node_type:
                node.node_type = node_type
            if style_data is not None:
                node.style_data = style_data
            if metadata is not None:
                node.metadata_ = metadata
        return node

    def delete_node(self, node_id: str, user_id: str, session: Optional[Session] = None) -> bool:
        """Physically delete a node; child nodes and incident edges cascade"""
        with self._transaction(session) as s:
            node = self._load_node(s, node_id)
            self._require_owner(s, node.mind_map_id, user_id)
            s.expunge(node)

            deleted = s.query(Node).filter_by(id=node_id).delete(synchronize_session=False)
            if deleted == 0:
                raise NotFound(f"Node not found: {node_id}")
        return True

    def batch_update_positions(self, user_id: str,
                               updates: Iterable[Union[PositionUpdate, Dict[str, Any]]],
                               session: Optional[Session] = None) -> int:
        """
        Move many nodes in one transaction.

        Every node must exist and belong to a mind map the caller owns;
        otherwise nothing is changed.

        Returns:
            Number of nodes updated
        """
        items = [_as_position_update(u) for u in (updates or [])]
        if not items:
            raise ValidationError("No position updates given")

        with self._transaction(session) as s:
            owned_maps = set()
            for item in items:
                node = self._load_node(s, item.node_id)
                if node.mind_map_id not in owned_maps:
                    self._require_owner(s, node.mind_map_id, user_id)
                    owned_maps.add(node.mind_map_id)
                node.position_x = float(item.x)
                node.position_y = float(item.y)

        logger.debug(f"Batch-updated {len(items)} node positions for {user_id}")
        return len(items)

    # ==================== Edge Operations ====================

    def create_edge(self, mind_map_id: str, user_id: str, source_id: str, target_id: str,
                    edge_type: str = "default", style_data: Optional[Dict[str, Any]] = None,
                    session: Optional[Session] = None) -> Edge:
        """Connect two nodes of the same mind map (one edge per ordered pair)"""
        if _is_blank(source_id) or _is_blank(target_id):
            raise ValidationError("source_id and target_id are required")

        with self._transaction(session) as s:
            self._require_owner(s, mind_map_id, user_id)

            endpoints = (
                s.query(Node.id)
                .filter(Node.mind_map_id == mind_map_id, or_(Node.id == source_id, Node.id == target_id))
                .all()
            )
            found = {row[0] for row in endpoints}
            if source_id not in found or target_id not in found:
                raise ValidationError(f"Edge endpoints must be nodes of mind map {mind_map_id}")

            existing = s.query(Edge.id).filter_by(
                mind_map_id=mind_map_id, source_id=source_id, target_id=target_id
            ).first()
            if existing is not None:
                raise DuplicateEdgeError(f"Edge {source_id} -> {target_id} already exists")

            edge = Edge(
                mind_map_id=mind_map_id,
                source_id=source_id,
                target_id=target_id,
                edge_type=edge_type or "default",
                style_data=style_data if style_data is not None else {},
            )
            s.add(edge)
            try:
                s.flush()
            except IntegrityError as e:
                # Lost a race against a concurrent insert of the same pair
                raise DuplicateEdgeError(f"Edge {source_id} -> {target_id} already exists") from e
        return edge

    def get_edge(self, edge_id: str, user_id: str, session: Optional[Session] = None) -> Edge:
        with self._transaction(session) as s:
            edge = self._load_edge(s, edge_id)
            self._require_reader(s, edge.mind_map_id, user_id)
            return edge

    def list_edges(self, mind_map_id: str, user_id: str, session: Optional[Session] = None) -> List[Edge]:
        with self._transaction(session) as s:
            self._require_reader(s, mind_map_id, user_id)
            return s.query(Edge).filter_by(mind_map_id=mind_map_id).order_by(Edge.created_at).all()

    def delete_edge(self, edge_id: str, user_id: str, session: Optional[Session] = None) -> bool:
        with self._transaction(session) as s:
            edge = self._load_edge(s, edge_id)
            self._require_owner(s, edge.mind_map_id, user_id)
            s.expunge(edge)

            if s.query(Edge).filter_by(id=edge_id).delete(synchronize_session=False) == 0:
                raise NotFound(f"Edge not found: {edge_id}")
        return True

    def delete_edge_by_nodes(self, source_id: str, target_id: str, user_id: str,
                             session: Optional[Session] = None) -> bool:
        """Delete the edge connecting source -> target"""
        with self._transaction(session) as s:
            edge = s.query(Edge).filter_by(source_id=source_id, target_id=target_id).first()
            if edge is None:
                raise NotFound(f"Edge not found: {source_id} -> {target_id}")
            self._require_owner(s, edge.mind_map_id, user_id)
            s.expunge(edge)

            deleted = s.query(Edge).filter_by(
                source_id=source_id, target_id=target_id
            ).delete(synchronize_session=False)
            if deleted == 0:
                raise NotFound(f"Edge not found: {source_id} -> {target_id}")
        return True

    # ==================== API Key Records ====================

    def upsert_api_key(self, user_id: str, service: str, encrypted_key: str,
                       session: Optional[Session] = None) -> APIKey:
        """Store the (already encrypted) key; an existing record is replaced and reactivated"""
        with self._transaction(session) as s:
            record = s.query(APIKey).filter_by(user_id=user_id, service=service).first()
            if record is None:
                record = APIKey(user_id=user_id, service=service, encrypted_key=encrypted_key, is_active=True)
                s.add(record)
            else:
                record.encrypted_key = encrypted_key
                record.is_active = True
        return record

    def get_api_key(self, key_id: str, session: Optional[Session] = None) -> Optional[APIKey]:
        with self._transaction(session) as s:
            return s.query(APIKey).filter_by(id=key_id).first()

    def get_api_key_by_service(self, user_id: str, service: str,
                               session: Optional[Session] = None) -> Optional[APIKey]:
        with self._transaction(session) as s:
            return s.query(APIKey).filter_by(user_id=user_id, service=service).first()

    def list_api_keys(self, user_id: str, session: Optional[Session] = None) -> List[APIKey]:
        with self._transaction(session) as s:
            return s.query(APIKey).filter_by(user_id=user_id).order_by(APIKey.service).all()

    def update_api_key(self, key_id: str, encrypted_key: Optional[str] = None,
                       is_active: Optional[bool] = None, session: Optional[Session] = None) -> APIKey:
        with self._transaction(session) as s:
            record = s.query(APIKey).filter_by(id=key_id).first()
            if record is None:
                raise NotFound(f"API key not found: {key_id}")
            if encrypted_key:
                record.encrypted_key = encrypted_key
            if is_active is not None:
                record.is_active = bool(is_active)
        return record

    def delete_api_key(self, key_id: str, session: Optional[Session] = None) -> bool:
        with self._transaction(session) as s:
            if s.query(APIKey).filter_by(id=key_id).delete(synchronize_session=False) == 0:
                raise NotFound(f"API key not found: {key_id}")
        return True


# ==================== Global Instance ====================

_db_manager: Optional[DatabaseManager] = None


def get_db_manager(database_url: Optional[str] = None) -> DatabaseManager:
    """Get or create the global database manager instance"""
    global _db_manager

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def init_db(database_url: Optional[str] = None) -> DatabaseManager:
    """Initialize the database (alias for get_db_manager)"""
    return get_db_manager(database_url)
