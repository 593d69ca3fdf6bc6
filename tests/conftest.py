"""Pytest configuration and fixtures."""

import json
from contextlib import asynccontextmanager

import pytest
from unittest.mock import AsyncMock

import config
from models import ResourceSpec


@pytest.fixture(autouse=True)
def clean_config():
    """Reset the global config before and after each test."""
    config.reset_config()
    yield
    config.reset_config()


@pytest.fixture
def mock_connection():
    """Create a mock asyncpg connection."""
    return AsyncMock()


@pytest.fixture
def mock_pool(mock_connection):
    """Create a mock asyncpg pool whose acquire() yields mock_connection."""
    pool = AsyncMock()

    @asynccontextmanager
    async def mock_acquire():
        yield mock_connection

    pool.acquire = mock_acquire
    return pool


@pytest.fixture
def sample_spec_dict():
    """Spec section of a widget resource document."""
    return {
        "read_query": "query ($widgetId: ID!) { widget(id: $widgetId) { id name } }",
        "create_mutation": (
            "mutation ($name: String!) { createWidget(name: $name) { id } }"
        ),
        "update_mutation": (
            "mutation ($widgetId: ID!, $name: String!) "
            "{ updateWidget(id: $widgetId, name: $name) { id } }"
        ),
        "delete_mutation": (
            "mutation ($widgetId: ID!) { deleteWidget(id: $widgetId) { id } }"
        ),
        "mutation_variables": {"name": "foo"},
        "compute_mutation_keys": {"widgetId": "data.id"},
    }


@pytest.fixture
def sample_spec(sample_spec_dict):
    """Widget spec that extracts widgetId from the read response."""
    return ResourceSpec.from_dict(sample_spec_dict)


@pytest.fixture
def sample_document(sample_spec_dict):
    """A complete resource document."""
    return {"name": "widget-foo", "spec": sample_spec_dict}


@pytest.fixture
def document_file(tmp_path, sample_document):
    """The sample document written to a JSON file."""
    path = tmp_path / "widget.json"
    path.write_text(json.dumps(sample_document))
    return path
