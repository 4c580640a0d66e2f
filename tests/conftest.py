import pytest

from research_gateway.config import GatewaySettings
from research_gateway.main import create_app
from tests.fakes import FakeAgentFactory, FakeLLMClient, FakeTavilyClient


def make_settings(**overrides) -> GatewaySettings:
    settings = GatewaySettings(
        default_model="model-a",
        fallback_models=["model-b", "model-c"],
        max_iterations_default=10,
        llm_base_url="http://llm.test/v1",
        llm_api_key=None,
        tavily_api_key=None,
        host="127.0.0.1",
        port=3100,
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


@pytest.fixture
def app_factory():
    def _factory(*, agent_factory: FakeAgentFactory | None = None, **settings_overrides):
        settings = make_settings(**settings_overrides)
        agents = agent_factory or FakeAgentFactory()
        app = create_app(
            settings,
            agent_factory=agents,
            llm_client=FakeLLMClient(),
            tavily_client=FakeTavilyClient(api_key=None),
        )
        return app, agents

    return _factory
