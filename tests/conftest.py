"""Shared fixtures: in-memory SQLite store, vault and a stubbed LLM transport"""

from unittest.mock import MagicMock

import pytest
import requests

from config.app_config import LLMConfig
from config.llm_config import LLMClient
from core.api_key_service import APIKeyService
from core.credential_vault import CredentialVault
from core.idea_pipeline import IdeaPipeline
from database.db_manager import DatabaseManager

OWNER = "user-alice"
STRANGER = "user-bob"

TEST_TEMPLATES = {
    "system": "You are a creative brainstorming assistant.",
    "generation_types": {
        "new": "Generate {count} creative ideas about: {topic}. Context: {context}",
        "expand": "Generate {count} detailed sub-ideas that expand on this concept: {topic}. Context: {context}",
    },
}


def make_response(status_code=200, content=None, body=None, text=""):
    """Fake requests.Response for a chat completion"""
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if body is None and content is not None:
        body = {
            "model": "gpt-3.5-turbo",
            "choices": [{"message": {"role": "assistant", "content": content}}],
            "usage": {"total_tokens": 42},
        }
    if body is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite://", echo=False)
    yield manager
    manager.dispose()


@pytest.fixture
def vault():
    return CredentialVault("unit-test-secret")


@pytest.fixture
def mind_map(db):
    return db.create_mind_map(OWNER, "Energy", description="Brainstorm")


@pytest.fixture
def llm_config():
    return LLMConfig(
        api_base="https://llm.test/v1",
        model="gpt-3.5-turbo",
        default_api_key=None,
        temperature=0.7,
        max_tokens=500,
        timeout_seconds=5.0,
    )


@pytest.fixture
def http():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def llm_client(llm_config, http):
    return LLMClient(config=llm_config, session=http)


@pytest.fixture
def api_keys(db, vault):
    return APIKeyService(db, vault)


@pytest.fixture
def pipeline(db, llm_client, api_keys, llm_config):
    return IdeaPipeline(
        db=db,
        llm_client=llm_client,
        api_keys=api_keys,
        llm_config=llm_config,
        templates=TEST_TEMPLATES,
    )
