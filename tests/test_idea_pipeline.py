"""IdeaPipeline tests (LLM transport stubbed, in-memory store)"""

import json
from unittest.mock import patch

import pytest
import requests
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from core.exceptions import (
    ValidationError, Unauthorized, NotFound, NoCredential, UpstreamError,
    StoreError, MaterializationError
)
from core.idea_pipeline import IdeaPipeline
from schemas.idea_schema import Idea

from .conftest import OWNER, STRANGER, TEST_TEMPLATES, make_response

RENEWABLE_REPLY = '["Solar micro-grids","Wind co-ops","Battery recycling"]'


def sent_messages(http):
    return http.post.call_args.kwargs["json"]["messages"]


def sent_key(http):
    return http.post.call_args.kwargs["headers"]["Authorization"]


# ==================== generate ====================

class TestGenerate:

    def test_end_to_end_renewable_energy(self, db, pipeline, http, mind_map):
        http.post.return_value = make_response(content=RENEWABLE_REPLY)

        ideas = pipeline.generate(
            mind_map.id, OWNER, topic="renewable energy", generation_type="new",
            count=3, api_key="sk-explicit",
        )
        assert [i.content for i in ideas] == ["Solar micro-grids", "Wind co-ops", "Battery recycling"]
        assert all(i.confidence == 0.7 for i in ideas)

        result = pipeline.materialize(mind_map.id, OWNER, ideas, anchor_x=0.0, anchor_y=0.0, layout="horizontal")
        assert len(result.nodes) == 3
        assert result.edges == []
        assert sorted(n.position_x for n in result.nodes) == [-250.0, 0.0, 250.0]
        assert all(n.position_y == 0.0 for n in result.nodes)
        assert all(n.node_type == "idea" for n in result.nodes)
        assert len(db.list_nodes(mind_map.id, OWNER)) == 3

    def test_prompt_and_messages(self, pipeline, http, mind_map):
        http.post.return_value = make_response(content="[]")

        pipeline.generate(mind_map.id, OWNER, "tides", context="coastal towns", count=4, api_key="sk")

        system, user = sent_messages(http)
        assert system == {"role": "system", "content": TEST_TEMPLATES["system"]}
        assert user["role"] == "user"
        assert user["content"] == "Generate 4 creative ideas about: tides. Context: coastal towns"

    def test_prompt_families(self, pipeline):
        assert "expand on this concept: x" in pipeline.build_prompt("x", "", "expand", 2)
        # Types missing from the YAML use the built-in wording
        assert pipeline.build_prompt("x", "", "improve", 2).startswith("Improve and refine this idea in 2")
        assert pipeline.build_prompt("x", "", "branch", 2).startswith("Generate 2 alternative approaches")
        assert pipeline.build_prompt("x", "", "mystery", 2) == pipeline.build_prompt("x", "", "new", 2)

    @pytest.mark.parametrize("requested,expected", [(0, 5), (-2, 5), (3, 3), (10, 10), (50, 10)])
    def test_count_is_clamped(self, pipeline, http, mind_map, requested, expected):
        http.post.return_value = make_response(content="[]")
        pipeline.generate(mind_map.id, OWNER, "topic", count=requested, api_key="sk")
        assert sent_messages(http)[1]["content"].startswith(f"Generate {expected} ")

    @pytest.mark.parametrize("map_id,topic", [("", "topic"), ("some-map", ""), ("some-map", "   ")])
    def test_validation_happens_before_any_call(self, pipeline, http, map_id, topic):
        with pytest.raises(ValidationError):
            pipeline.generate(map_id, OWNER, topic, api_key="sk")
        http.post.assert_not_called()

    def test_ownership(self, db, pipeline, http, mind_map):
        with pytest.raises(Unauthorized):
            pipeline.generate(mind_map.id, STRANGER, "topic", api_key="sk")

        public = db.create_mind_map(OWNER, "Open", is_public=True)
        with pytest.raises(Unauthorized):
            pipeline.generate(public.id, STRANGER, "topic", api_key="sk")

        with pytest.raises(NotFound):
            pipeline.generate("missing", OWNER, "topic", api_key="sk")

        db.delete_mind_map(mind_map.id, OWNER)
        with pytest.raises(NotFound):
            pipeline.generate(mind_map.id, OWNER, "topic", api_key="sk")
        http.post.assert_not_called()

    @pytest.mark.parametrize("status", [401, 500, 503])
    def test_upstream_status(self, pipeline, http, mind_map, status):
        http.post.return_value = make_response(status_code=status, body={}, text="boom")
        with pytest.raises(UpstreamError) as info:
            pipeline.generate(mind_map.id, OWNER, "topic", api_key="sk")
        assert info.value.status_code == status

    def test_upstream_timeout(self, pipeline, http, mind_map):
        http.post.side_effect = requests.Timeout("read timed out")
        with pytest.raises(UpstreamError):
            pipeline.generate(mind_map.id, OWNER, "topic", api_key="sk")

    def test_prose_reply_is_normalized(self, pipeline, http, mind_map):
        http.post.return_value = make_response(content='Sure!\n[{"idea": "Kelp farms"}]')
        ideas = pipeline.generate(mind_map.id, OWNER, "ocean", api_key="sk")
        assert [i.content for i in ideas] == ["Kelp farms"]


# ==================== key resolution ====================

class TestKeyResolution:

    def test_explicit_key_wins(self, pipeline, api_keys, http, mind_map, llm_config):
        llm_config.default_api_key = "sk-default"
        api_keys.create_api_key(OWNER, "openai", "sk-stored")
        http.post.return_value = make_response(content="[]")

        pipeline.generate(mind_map.id, OWNER, "topic", api_key="sk-explicit")
        assert sent_key(http) == "Bearer sk-explicit"

    def test_stored_key_before_default(self, pipeline, api_keys, http, mind_map, llm_config):
        llm_config.default_api_key = "sk-default"
        api_keys.create_api_key(OWNER, "openai", "sk-stored")
        http.post.return_value = make_response(content="[]")

        pipeline.generate(mind_map.id, OWNER, "topic")
        assert sent_key(http) == "Bearer sk-stored"

    def test_inactive_stored_key_falls_through(self, pipeline, api_keys, http, mind_map, llm_config):
        llm_config.default_api_key = "sk-default"
        record = api_keys.create_api_key(OWNER, "openai", "sk-stored")
        api_keys.update_api_key(record.id, OWNER, is_active=False)
        http.post.return_value = make_response(content="[]")

        pipeline.generate(mind_map.id, OWNER, "topic")
        assert sent_key(http) == "Bearer sk-default"

    def test_no_key_anywhere(self, pipeline, http, mind_map):
        with pytest.raises(NoCredential):
            pipeline.generate(mind_map.id, OWNER, "topic")
        http.post.assert_not_called()

    def test_unreadable_stored_key_falls_through_to_default(self, db, pipeline, http, mind_map, llm_config):
        llm_config.default_api_key = "sk-default"
        db.upsert_api_key(OWNER, "openai", "bm90IGEgcmVhbCBjaXBoZXJ0ZXh0")
        http.post.return_value = make_response(content="[]")

        pipeline.generate(mind_map.id, OWNER, "topic")
        assert sent_key(http) == "Bearer sk-default"

    def test_unreadable_stored_key_without_default(self, db, pipeline, http, mind_map):
        db.upsert_api_key(OWNER, "openai", "!!corrupt!!")
        with pytest.raises(NoCredential):
            pipeline.generate(mind_map.id, OWNER, "topic")
        http.post.assert_not_called()

    def test_without_key_service(self, db, llm_client, llm_config, http, mind_map):
        llm_config.default_api_key = "sk-default"
        pipeline = IdeaPipeline(db, llm_client, llm_config=llm_config, templates=TEST_TEMPLATES)
        http.post.return_value = make_response(content="[]")

        pipeline.generate(mind_map.id, OWNER, "topic")
        assert sent_key(http) == "Bearer sk-default"


# ==================== materialize ====================

class TestMaterialize:

    def ideas(self, *contents):
        return [Idea(content=c) for c in contents]

    def test_with_parent_creates_edges(self, db, pipeline, mind_map):
        root = db.create_node(mind_map.id, OWNER, "Energy", 100.0, 100.0)

        result = pipeline.materialize(
            mind_map.id, OWNER, self.ideas("A", "B", "C", "D"),
            parent_id=root.id, anchor_x=100.0, anchor_y=100.0, layout="radial",
        )

        assert len(result.nodes) == 4
        assert all(n.parent_id == root.id for n in result.nodes)
        assert {(e.source_id, e.target_id) for e in result.edges} == {(root.id, n.id) for n in result.nodes}
        assert all(e.edge_type == "idea" for e in result.edges)
        data = result.to_dict()
        assert len(data["nodes"]) == 4 and len(data["edges"]) == 4

    def test_parent_must_belong_to_map(self, db, pipeline, mind_map):
        other = db.create_mind_map(OWNER, "Other")
        foreign = db.create_node(other.id, OWNER, "Foreign")
        with pytest.raises(NotFound):
            pipeline.materialize(mind_map.id, OWNER, self.ideas("A"), parent_id=foreign.id)
        with pytest.raises(NotFound):
            pipeline.materialize(mind_map.id, OWNER, self.ideas("A"), parent_id="missing")

    def test_parent_in_foreign_private_map_is_not_found(self, db, pipeline, mind_map):
        private = db.create_mind_map(STRANGER, "Bob's private map")
        foreign = db.create_node(private.id, STRANGER, "Hidden")
        with pytest.raises(NotFound):
            pipeline.materialize(mind_map.id, OWNER, self.ideas("A"), parent_id=foreign.id)
        assert db.list_nodes(mind_map.id, OWNER) == []

    def test_requires_owner(self, pipeline, mind_map):
        with pytest.raises(Unauthorized):
            pipeline.materialize(mind_map.id, STRANGER, self.ideas("A"))

    def test_empty_ideas(self, pipeline, mind_map):
        result = pipeline.materialize(mind_map.id, OWNER, [])
        assert result.nodes == [] and result.edges == []

    def test_partial_failure_reports_counts(self, db, pipeline, mind_map):
        real_create_node = db.create_node
        calls = {"n": 0}

        def flaky_create_node(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 3:
                raise StoreError("disk full")
            return real_create_node(*args, **kwargs)

        root = db.create_node(mind_map.id, OWNER, "Root")
        calls["n"] = 0
        with patch.object(db, "create_node", side_effect=flaky_create_node):
            with pytest.raises(MaterializationError) as info:
                pipeline.materialize(mind_map.id, OWNER, self.ideas("A", "B", "C", "D"), parent_id=root.id)

        assert info.value.nodes_created == 2
        assert info.value.edges_created == 2
        assert isinstance(info.value, StoreError)
        # Earlier rows are kept
        assert len(db.list_nodes(mind_map.id, OWNER)) == 3
        assert len(db.list_edges(mind_map.id, OWNER)) == 2

    def test_atomic_failure_rolls_back_everything(self, db, pipeline, mind_map):
        real_create_edge = db.create_edge
        calls = {"n": 0}

        def flaky_create_edge(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise StoreError("constraint violated")
            return real_create_edge(*args, **kwargs)

        root = db.create_node(mind_map.id, OWNER, "Root")
        with patch.object(db, "create_edge", side_effect=flaky_create_edge):
            with pytest.raises(MaterializationError):
                pipeline.materialize(
                    mind_map.id, OWNER, self.ideas("A", "B", "C"), parent_id=root.id, atomic=True,
                )

        assert [n.id for n in db.list_nodes(mind_map.id, OWNER)] == [root.id]
        assert db.list_edges(mind_map.id, OWNER) == []

    def test_atomic_commit_failure_rolls_back(self, db, pipeline, mind_map):
        real_commit = Session.commit

        def failing_commit(session):
            # Only the batch session holds freshly flushed idea nodes
            if any(getattr(obj, "node_type", None) == "idea" for obj in session.identity_map.values()):
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            return real_commit(session)

        with patch.object(Session, "commit", autospec=True, side_effect=failing_commit):
            with pytest.raises(MaterializationError) as info:
                pipeline.materialize(mind_map.id, OWNER, self.ideas("A", "B"), atomic=True)

        assert isinstance(info.value.__cause__, OperationalError)
        assert db.list_nodes(mind_map.id, OWNER) == []

    def test_atomic_success(self, db, pipeline, mind_map):
        root = db.create_node(mind_map.id, OWNER, "Root")
        result = pipeline.materialize(
            mind_map.id, OWNER, self.ideas("A", "B"), parent_id=root.id, layout="vertical", atomic=True,
        )
        assert len(result.nodes) == 2 and len(result.edges) == 2
        assert len(db.list_nodes(mind_map.id, OWNER)) == 3
        assert [n.to_dict()["content"] for n in result.nodes] == ["A", "B"]


def test_run_chains_generate_and_materialize(db, pipeline, http, mind_map):
    root = db.create_node(mind_map.id, OWNER, "renewable energy")
    http.post.return_value = make_response(content=json.dumps([{"idea": "Geothermal"}, {"text": "Tidal"}]))

    result = pipeline.run(
        mind_map.id, OWNER, "renewable energy", generation_type="expand", count=2,
        api_key="sk", parent_id=root.id, layout="horizontal",
    )

    assert [n.content for n in result.nodes] == ["Geothermal", "Tidal"]
    assert [n.position_x for n in result.nodes] == [-250.0, 0.0]
    assert len(result.edges) == 2
    assert "expand on this concept: renewable energy" in sent_messages(http)[1]["content"]
