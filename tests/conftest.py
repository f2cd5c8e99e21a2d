"""
Pytest Configuration and Fixtures
"""

import pytest
from typing import Any, Dict

from promptkit.domain.models import (
    Prompt, Instruction, Role, Context, Variable, VariableType, Example,
    EvaluationCriteria, CriterionKind,
)
from promptkit.domain.context.context_manager import ContextManager
from promptkit.domain.llm.llm_adapter import ScriptedLLMAdapter
from promptkit.domain.orchestration.prompt_orchestrator import PromptOrchestrator
from promptkit.domain.template.prompt_library import PromptLibrary
from promptkit.domain.template.template_engine import PromptTemplateEngine
from promptkit.domain.tool.tool_registry import ToolRegistry
from promptkit.infrastructure.config import Settings
from promptkit.infrastructure.observability.logging import metrics


WEATHER = {
    "berlin": {"temperature_c": 18, "conditions": "cloudy"},
    "rome": {"temperature_c": 27, "conditions": "sunny"},
}


def get_weather(city: str) -> Dict[str, Any]:
    """Look up the current weather for a city"""
    return {"city": city, **WEATHER[city.lower()]}


async def book_hotel(city: str, nights: int = 1) -> str:
    """Book a hotel room in a city"""
    return f"Booked {nights} night(s) in {city}"


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def settings() -> Settings:
    """Settings with small loop bounds for fast tests."""
    return Settings(max_iterations=4, max_refinements=1, tool_timeout_seconds=2.0)


@pytest.fixture
def registry() -> ToolRegistry:
    """Registry holding a weather lookup and a permission-gated booking tool."""
    registry = ToolRegistry()
    registry.register_function(get_weather, category="travel")
    registry.register_function(book_hotel, category="travel", required_permissions=["booking:write"])
    return registry


@pytest.fixture
def engine() -> PromptTemplateEngine:
    return PromptTemplateEngine()


@pytest.fixture
def trip_prompt() -> Prompt:
    """A prompt exercising every component."""
    return Prompt(
        name="trip_planner",
        description="Plans short city trips",
        role=Role(
            name="a travel planner",
            description="You plan efficient city trips.",
            persona_traits=["concise", "friendly"],
        ),
        instruction=Instruction(
            text="Plan a {days}-day trip to {destination}.",
            constraints=["Stay under {budget} EUR per day"],
            examples=[Example(input="Paris", output="Day 1: Louvre")],
        ),
        contexts=[Context(source="policy", content="Prefer public transport.")],
        variables=[
            Variable(name="destination"),
            Variable(name="days", type=VariableType.INTEGER, default=2),
            Variable(name="budget", type=VariableType.NUMBER, required=False, default=100),
        ],
        tools=["get_weather"],
        evaluation_criteria=[
            EvaluationCriteria(name="mentions_day", kind=CriterionKind.CONTAINS, value=["Day 1"]),
        ],
        tags=["travel"],
    )


@pytest.fixture
def scripted_llm() -> ScriptedLLMAdapter:
    return ScriptedLLMAdapter()


@pytest.fixture
def orchestrator(scripted_llm, registry, settings, trip_prompt) -> PromptOrchestrator:
    """Orchestrator over the scripted model with the trip prompt registered."""
    library = PromptLibrary()
    library.register(trip_prompt)
    return PromptOrchestrator(
        llm=scripted_llm,
        context_manager=ContextManager(tool_registry=registry, max_context_items=settings.max_context_items),
        prompt_library=library,
        settings=settings,
    )
