"""
Idea Pipeline

Turns a topic into nodes on a mind map:

    resolve key -> build prompt -> LLM call -> normalize -> layout -> store

`generate` stops after normalization so callers can show ideas before
keeping them; `materialize` lays out and persists a list of ideas;
`run` chains the two.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError

from config.app_config import LLMConfig, get_config, get_prompt_templates
from config.llm_config import LLMClient
from schemas.idea_schema import GenerationType, Idea, LayoutStrategy, MaterializeResult

from .api_key_service import APIKeyService
from .exceptions import (
    MindMapError, ValidationError, Unauthorized, NotFound, NoCredential,
    DecryptionError, StoreError, MaterializationError
)
from .layout_engine import LayoutEngine
from .response_normalizer import ResponseNormalizer

logger = logging.getLogger(__name__)

IDEA_NODE_TYPE = "idea"
IDEA_EDGE_TYPE = "idea"

DEFAULT_SYSTEM_PROMPT = (
    "You are a creative brainstorming assistant. Generate concise, innovative ideas "
    "for the given topic. Each idea should be clear, actionable, and directly relevant "
    "to the topic. Format your response as a JSON array of ideas."
)

DEFAULT_TEMPLATES: Dict[str, str] = {
    GenerationType.NEW.value: "Generate {count} creative ideas about: {topic}. Context: {context}",
    GenerationType.EXPAND.value: "Generate {count} detailed sub-ideas that expand on this concept: {topic}. Context: {context}",
    GenerationType.IMPROVE.value: "Improve and refine this idea in {count} different ways: {topic}. Context: {context}",
    GenerationType.BRANCH.value: "Generate {count} alternative approaches or directions for this concept: {topic}. Context: {context}",
}


class IdeaPipeline:
    """
    LLM-backed idea generation for mind maps.

    All collaborators are injected; `from_config` wires the defaults.
    """

    def __init__(
        self,
        db,
        llm_client: LLMClient,
        api_keys: Optional[APIKeyService] = None,
        normalizer: Optional[ResponseNormalizer] = None,
        layout: Optional[LayoutEngine] = None,
        llm_config: Optional[LLMConfig] = None,
        templates: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            db: DatabaseManager
            llm_client: Chat completion client
            api_keys: Stored-key lookup; without it only explicit and default keys are used
            normalizer: Reply parser
            layout: Position calculator
            llm_config: Count limits, service name and the default API key
            templates: Parsed prompt_templates.yaml ({"system": ..., "generation_types": {...}})
        """
        self.db = db
        self.llm_client = llm_client
        self.api_keys = api_keys
        self.normalizer = normalizer or ResponseNormalizer()
        self.layout = layout or LayoutEngine()
        self.llm_config = llm_config or llm_client.config

        templates = templates if templates is not None else get_prompt_templates()
        self.system_prompt = templates.get("system") or DEFAULT_SYSTEM_PROMPT
        self.templates = dict(DEFAULT_TEMPLATES)
        self.templates.update(templates.get("generation_types") or {})

    @classmethod
    def from_config(cls, db=None) -> "IdeaPipeline":
        """Build a pipeline from the global configuration"""
        from database.db_manager import get_db_manager
        from config.llm_config import get_llm_client
        from .credential_vault import CredentialVault

        config = get_config()
        db = db or get_db_manager()
        vault = CredentialVault.from_config(config.security)
        return cls(
            db=db,
            llm_client=get_llm_client(),
            api_keys=APIKeyService(db, vault),
            llm_config=config.llm,
        )

    # ==================== Generation ====================

    def clamp_count(self, count: Optional[int]) -> int:
        """Non-positive counts become the default; large ones are capped"""
        if not count or count <= 0:
            return self.llm_config.default_count
        return min(count, self.llm_config.max_count)

    def resolve_api_key(self, user_id: str, api_key: Optional[str] = None) -> str:
        """
        Pick the credential for the outbound call.

        Order: explicit key, the caller's active stored key, the configured
        default. A stored key that cannot be decrypted is skipped like a
        missing one.
        """
        if api_key:
            return api_key

        if self.api_keys is not None:
            try:
                stored = self.api_keys.get_decrypted_api_key(user_id, self.llm_config.service)
            except DecryptionError as e:
                logger.warning(f"Ignoring unreadable stored {self.llm_config.service} key for user {user_id}: {e}")
                stored = None
            if stored:
                logger.debug(f"Using stored {self.llm_config.service} key for user {user_id}")
                return stored

        if self.llm_config.default_api_key:
            return self.llm_config.default_api_key

        raise NoCredential("No API key provided")

    def build_prompt(self, topic: str, context: str = "",
                     generation_type: Union[str, GenerationType] = GenerationType.NEW,
                     count: int = 5) -> str:
        gen_type = GenerationType.parse(generation_type)
        template = self.templates.get(gen_type.value) or self.templates[GenerationType.NEW.value]
        return template.format(count=count, topic=topic, context=context or "")

    def generate(
        self,
        mind_map_id: str,
        user_id: str,
        topic: str,
        context: str = "",
        generation_type: Union[str, GenerationType] = GenerationType.NEW,
        count: int = 5,
        api_key: Optional[str] = None,
    ) -> List[Idea]:
        """
        Ask the LLM for ideas about `topic`.

        Raises:
            ValidationError: missing mind map id or topic
            NotFound / Unauthorized: map absent, deleted or not the caller's
            NoCredential: no key could be resolved
            UpstreamError: the LLM call failed
        """
        if not mind_map_id or not str(mind_map_id).strip():
            raise ValidationError("Mind map ID is required")
        if not topic or not topic.strip():
            raise ValidationError("Topic is required")

        self._require_owner(mind_map_id, user_id)

        count = self.clamp_count(count)
        key = self.resolve_api_key(user_id, api_key)
        prompt = self.build_prompt(topic.strip(), context, generation_type, count)

        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]
        result = self.llm_client.completion(messages, api_key=key)

        ideas = self.normalizer.normalize(result["content"], requested_count=count)
        logger.info(f"Generated {len(ideas)} ideas for mind map {mind_map_id}")
        return ideas

    # ==================== Materialization ====================

    def materialize(
        self,
        mind_map_id: str,
        user_id: str,
        ideas: Sequence[Idea],
        parent_id: Optional[str] = None,
        anchor_x: float = 0.0,
        anchor_y: float = 0.0,
        layout: Union[str, LayoutStrategy] = LayoutStrategy.GRID,
        atomic: bool = False,
    ) -> MaterializeResult:
        """
        Create one node per idea, laid out around the anchor, and connect
        each to `parent_id` when one is given.

        By default every row is committed on its own and a failure leaves
        earlier rows in place; with `atomic=True` the whole batch commits
        or rolls back together.

        Raises:
            MaterializationError: a node or edge insert failed
        """
        self._require_owner(mind_map_id, user_id)
        if parent_id:
            # Map ownership is already checked; the parent only has to live in this map
            parent = self.db.get_node(parent_id)
            if parent.mind_map_id != mind_map_id:
                raise NotFound(f"Parent node {parent_id} not found in mind map {mind_map_id}")

        ideas = list(ideas or [])
        positions = self.layout.compute_positions(anchor_x, anchor_y, len(ideas), layout)

        if atomic:
            return self._materialize_atomic(mind_map_id, user_id, ideas, positions, parent_id)

        result = MaterializeResult()
        for idea, position in zip(ideas, positions):
            try:
                self._insert_idea(mind_map_id, user_id, idea, position, parent_id, result)
            except (StoreError, ValidationError) as e:
                logger.error(
                    f"Materialization stopped after {len(result.nodes)} nodes / "
                    f"{len(result.edges)} edges: {e}"
                )
                raise MaterializationError(
                    f"Failed to materialize ideas: {e}",
                    nodes_created=len(result.nodes),
                    edges_created=len(result.edges),
                    nodes=result.nodes,
                    edges=result.edges,
                ) from e

        logger.info(f"Materialized {len(result.nodes)} ideas into mind map {mind_map_id}")
        return result

    def _materialize_atomic(self, mind_map_id, user_id, ideas, positions, parent_id) -> MaterializeResult:
        result = MaterializeResult()
        session = self.db.get_session()
        try:
            for idea, position in zip(ideas, positions):
                self._insert_idea(mind_map_id, user_id, idea, position, parent_id, result, session=session)
            session.commit()
        except MindMapError as e:
            session.rollback()
            raise MaterializationError(f"Failed to materialize ideas, nothing was kept: {e}") from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Atomic materialization failed: {e}")
            raise MaterializationError(f"Failed to materialize ideas, nothing was kept: {e}") from e
        finally:
            self.db.close_session(session)

        logger.info(f"Materialized {len(result.nodes)} ideas into mind map {mind_map_id} (atomic)")
        return result

    def _insert_idea(self, mind_map_id, user_id, idea, position, parent_id, result, session=None):
        node = self.db.create_node(
            mind_map_id=mind_map_id,
            user_id=user_id,
            content=idea.content,
            position_x=position.x,
            position_y=position.y,
            parent_id=parent_id,
            node_type=IDEA_NODE_TYPE,
            session=session,
        )
        result.nodes.append(node)

        if parent_id:
            edge = self.db.create_edge(
                mind_map_id=mind_map_id,
                user_id=user_id,
                source_id=parent_id,
                target_id=node.id,
                edge_type=IDEA_EDGE_TYPE,
                session=session,
            )
            result.edges.append(edge)

    def run(
        self,
        mind_map_id: str,
        user_id: str,
        topic: str,
        context: str = "",
        generation_type: Union[str, GenerationType] = GenerationType.NEW,
        count: int = 5,
        api_key: Optional[str] = None,
        parent_id: Optional[str] = None,
        anchor_x: float = 0.0,
        anchor_y: float = 0.0,
        layout: Union[str, LayoutStrategy] = LayoutStrategy.GRID,
        atomic: bool = False,
    ) -> MaterializeResult:
        """Generate ideas and place them on the map in one call"""
        ideas = self.generate(
            mind_map_id, user_id, topic,
            context=context, generation_type=generation_type, count=count, api_key=api_key,
        )
        return self.materialize(
            mind_map_id, user_id, ideas,
            parent_id=parent_id, anchor_x=anchor_x, anchor_y=anchor_y,
            layout=layout, atomic=atomic,
        )

    # ==================== Helpers ====================

    def _require_owner(self, mind_map_id: str, user_id: str):
        mind_map = self.db.get_mind_map(mind_map_id)
        if mind_map.user_id != user_id:
            raise Unauthorized(f"User {user_id} does not own mind map {mind_map_id}")
        return mind_map
