import pytest
from fastapi.testclient import TestClient

from gateway.api.main import create_app
from gateway.config import ApiKey, AuthSettings, GatewaySettings
from gateway.models.loader import PluginEntry
from gateway.models.strategy import ModelStrategy

TEST_KEY = "test-key"
READ_ONLY_KEY = "read-only-key"

ECHO_SCHEMA = {
    "type": "object",
    "required": ["text"],
    "properties": {"text": {"type": "string", "minLength": 1}},
}


class EchoStrategy(ModelStrategy):
    """Returns the input text unchanged"""

    async def process(self, params, context):
        return {"result": {"echoed": params["text"], "user": context.user_id}}


class FailingStrategy(ModelStrategy):
    async def process(self, params, context):
        raise RuntimeError("upstream model exploded")


@pytest.fixture
def settings():
    """Gateway settings with one read/write key and one read-only key"""
    return GatewaySettings(
        environment="test",
        auth=AuthSettings(keys=(
            ApiKey(id="API_KEY_TEST", key=TEST_KEY, permissions=("read", "write")),
            ApiKey(id="API_KEY_READER", key=READ_ONLY_KEY, permissions=("read",)),
        )),
    )


@pytest.fixture
def echo_entries():
    return [
        PluginEntry(model_id="echo", config_schema=ECHO_SCHEMA, strategy_class=EchoStrategy),
        PluginEntry(model_id="failing", config_schema={"type": "object"}, strategy_class=FailingStrategy),
    ]


@pytest.fixture
def client(settings, echo_entries):
    """Test client for an app serving only the echo and failing models."""
    app = create_app(settings=settings, load_builtin=False, entries=echo_entries)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return {"X-API-Key": TEST_KEY}
