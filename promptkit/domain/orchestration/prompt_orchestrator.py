from typing import TypedDict, Annotated, List, Dict, Any, Optional, Literal, Iterable
from datetime import datetime
from uuid import uuid4
import asyncio
import operator
import jsonschema
import structlog

from langgraph.graph import StateGraph, END
from langgraph.graph.message import add_messages
from langgraph.errors import GraphRecursionError
from langchain_core.messages import BaseMessage, AIMessage, HumanMessage, ToolMessage

from promptkit.domain.errors import PromptKitError, ToolNotFoundError
from promptkit.domain.models.prompt import Prompt
from promptkit.domain.models.run_state import (
    RunStatus, ToolCall, ToolResult, EvaluationResult, PromptRunResult
)
from promptkit.domain.context.context_manager import ContextManager
from promptkit.domain.context.memory.cache_memory_store import CacheMemoryStore
from promptkit.domain.template.template_engine import PromptTemplateEngine
from promptkit.domain.template.prompt_library import PromptLibrary
from promptkit.domain.tool.tool_registry import ToolRegistry
from promptkit.domain.tool.tool_executor import ToolExecutor
from promptkit.domain.llm.llm_adapter import LLMAdapter, extract_tool_calls, message_text
from promptkit.domain.evaluation.output_evaluator import OutputEvaluator
from promptkit.infrastructure.config import Settings
from promptkit.infrastructure.observability.logging import prompt_logger, metrics
from promptkit.infrastructure.observability.langfuse_tracing import ObservabilityManager

logger = structlog.get_logger(__name__)


REFINEMENT_TEMPLATE = (
    "Your previous answer did not meet these requirements:\n"
    "{failures}\n"
    "Revise your answer so that it satisfies all of them. Reply with the complete revised answer only."
)


class WorkflowState(TypedDict):
    """State for the prompt workflow graph"""
    messages: Annotated[List[BaseMessage], add_messages]
    prompt: Prompt
    user_input: str
    variables: Dict[str, Any]
    session_id: str
    run_id: str
    granted_permissions: List[str]
    output: Optional[str]
    evaluation: Optional[EvaluationResult]
    tool_results: Annotated[List[ToolResult], operator.add]
    node_trace: Annotated[List[str], operator.add]
    errors: Annotated[List[Dict[str, Any]], operator.add]
    iterations: int
    refinements: int
    status: str
    error: Optional[str]


class PromptOrchestrator:
    """Runs prompts through the build, call, tool, evaluate and refine loop"""

    def __init__(
        self,
        llm: LLMAdapter,
        tool_registry: Optional[ToolRegistry] = None,
        context_manager: Optional[ContextManager] = None,
        template_engine: Optional[PromptTemplateEngine] = None,
        evaluator: Optional[OutputEvaluator] = None,
        prompt_library: Optional[PromptLibrary] = None,
        settings: Optional[Settings] = None,
        observability: Optional[ObservabilityManager] = None
    ):
        self.settings = settings or Settings()
        self.llm = llm

        if context_manager is not None:
            self.tool_registry = tool_registry or context_manager.tool_registry
            self.context_manager = context_manager
        else:
            self.tool_registry = tool_registry or ToolRegistry()
            self.context_manager = ContextManager(
                cache_store=CacheMemoryStore(default_ttl=self.settings.cache_ttl_seconds),
                tool_registry=self.tool_registry,
                max_context_items=self.settings.max_context_items
            )

        self.template_engine = template_engine or PromptTemplateEngine()
        self.tool_executor = ToolExecutor(self.tool_registry, default_timeout=self.settings.tool_timeout_seconds)
        self.evaluator = evaluator or OutputEvaluator(judge=llm)
        self.prompt_library = prompt_library or PromptLibrary()
        self.observability = observability or ObservabilityManager(self.settings)
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the prompt workflow graph"""

        workflow = StateGraph(WorkflowState)

        workflow.add_node("prompt_builder", self.prompt_building_node)
        workflow.add_node("llm_caller", self.llm_call_node)
        workflow.add_node("tool_executor", self.tool_execution_node)
        workflow.add_node("output_evaluator", self.evaluation_node)
        workflow.add_node("refiner", self.refinement_node)
        workflow.add_node("finalizer", self.finalize_node)
        workflow.add_node("error_handler", self.error_handler_node)

        workflow.set_entry_point("prompt_builder")

        workflow.add_conditional_edges(
            "prompt_builder",
            self.check_prompt_built,
            {
                "ready": "llm_caller",
                "error": "error_handler"
            }
        )

        workflow.add_conditional_edges(
            "llm_caller",
            self.route_after_llm,
            {
                "tool_calls": "tool_executor",
                "answer": "output_evaluator",
                "error": "error_handler"
            }
        )

        # Tool results always go back to the model
        workflow.add_edge("tool_executor", "llm_caller")

        workflow.add_conditional_edges(
            "output_evaluator",
            self.route_after_evaluation,
            {
                "passed": "finalizer",
                "refine": "refiner",
                "exhausted": "finalizer",
                "error": "error_handler"
            }
        )

        workflow.add_edge("refiner", "llm_caller")
        workflow.add_edge("finalizer", END)
        workflow.add_edge("error_handler", END)

        return workflow.compile()

    async def prompt_building_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Resolve variables, assemble context and render the messages"""

        prompt = state["prompt"]
        session_id = state["session_id"]
        logger.info("Building prompt", session_id=session_id, prompt=prompt.name)

        try:
            missing_tools = [name for name in prompt.tools if not self.tool_registry.has(name)]
            if missing_tools:
                raise ToolNotFoundError(
                    f"Prompt '{prompt.name}' references unregistered tools: {', '.join(missing_tools)}"
                )

            context = await self.context_manager.build_context(prompt, state["user_input"], session_id)
            messages = self.template_engine.render(
                prompt,
                state["variables"],
                user_input=state["user_input"],
                history=context.conversation_history,
                contexts=context.contexts
            )
        except PromptKitError as e:
            return {"error": str(e), "node_trace": ["prompt_builder"]}

        await self.context_manager.update_context(session_id, {
            "state_update": {
                "status": RunStatus.RUNNING.value, "run_id": state["run_id"], "iteration": 0, "refinements": 0
            }
        })

        return {
            "messages": messages,
            "status": RunStatus.RUNNING.value,
            "node_trace": ["prompt_builder"]
        }

    async def llm_call_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Call the model with the conversation so far"""

        session_id = state["session_id"]
        prompt = state["prompt"]
        iterations = state["iterations"]

        if iterations >= self.settings.max_iterations:
            return {
                "error": f"Exceeded the maximum of {self.settings.max_iterations} model calls",
                "node_trace": ["llm_caller"]
            }

        tools = self.tool_registry.to_openai_tools(prompt.tools) if prompt.tools else None
        start = datetime.utcnow()

        try:
            response = await self.llm.generate(state["messages"], tools)
        except PromptKitError as e:
            prompt_logger.log_llm_call(
                session_id=session_id,
                iteration=iterations + 1,
                message_count=len(state["messages"]),
                success=False,
                error=str(e)
            )
            return {"error": str(e), "iterations": iterations + 1, "node_trace": ["llm_caller"]}

        prompt_logger.log_llm_call(
            session_id=session_id,
            iteration=iterations + 1,
            message_count=len(state["messages"]),
            tool_call_count=len(response.tool_calls),
            duration_ms=(datetime.utcnow() - start).total_seconds() * 1000
        )

        await self.context_manager.state_manager.update_state(session_id, {"iteration": iterations + 1})

        return {
            "messages": [response],
            "output": None if response.tool_calls else message_text(response),
            "iterations": iterations + 1,
            "node_trace": ["llm_caller"]
        }

    async def tool_execution_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Execute the tool calls requested by the last model response"""

        session_id = state["session_id"]
        last_message = state["messages"][-1]
        calls = extract_tool_calls(last_message) if isinstance(last_message, AIMessage) else []

        logger.info("Executing tools", session_id=session_id, tools=[c.name for c in calls])

        # One turn's calls run concurrently; results keep call order
        results: List[ToolResult] = list(await asyncio.gather(
            *(self._execute_traced(call, state) for call in calls)
        ))

        tool_messages = [
            ToolMessage(
                content=result.as_message_content(),
                tool_call_id=result.tool_call_id,
                name=result.tool_name,
                status="success" if result.success else "error"
            )
            for result in results
        ]

        return {
            "messages": tool_messages,
            "tool_results": results,
            "node_trace": ["tool_executor"]
        }

    async def _execute_traced(self, call: ToolCall, state: WorkflowState) -> ToolResult:
        with self.observability.trace_tool_execution(call.name, call.arguments) as span:
            result = await self.tool_executor.execute(
                call,
                allowed_tools=state["prompt"].tools,
                granted_permissions=state["granted_permissions"],
                session_id=state["session_id"]
            )
            span.update(output=result.as_message_content())
        return result

    async def evaluation_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Score the model's answer"""

        prompt = state["prompt"]

        try:
            evaluation = await self.evaluator.evaluate(prompt, state["output"] or "", state["user_input"])
        except (PromptKitError, jsonschema.SchemaError) as e:
            return {"error": f"Evaluation failed: {e}", "node_trace": ["output_evaluator"]}

        prompt_logger.log_evaluation(
            session_id=state["session_id"],
            prompt_name=prompt.name,
            score=evaluation.score,
            passed=evaluation.passed,
            failed_criteria=[c.name for c in evaluation.failed_criteria]
        )
        metrics.set_gauge("evaluation.score", evaluation.score, tags={"prompt": prompt.name})

        return {"evaluation": evaluation, "node_trace": ["output_evaluator"]}

    async def refinement_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Feed evaluation failures back to the model"""

        evaluation = state["evaluation"]
        failures = "\n".join(f"- {line}" for line in evaluation.feedback())
        refinements = state["refinements"] + 1

        logger.info("Requesting refinement", session_id=state["session_id"], refinement=refinements)
        await self.context_manager.state_manager.update_state(state["session_id"], {"refinements": refinements})

        return {
            "messages": [HumanMessage(content=REFINEMENT_TEMPLATE.format(failures=failures))],
            "refinements": refinements,
            "node_trace": ["refiner"]
        }

    async def finalize_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Settle the run status and persist the turn"""

        session_id = state["session_id"]
        prompt = state["prompt"]
        evaluation = state["evaluation"]
        status = RunStatus.COMPLETED if evaluation and evaluation.passed else RunStatus.NEEDS_REVIEW

        if status == RunStatus.NEEDS_REVIEW:
            logger.warning(
                "Answer failed evaluation after all refinements",
                session_id=session_id,
                prompt=prompt.name,
                score=evaluation.score if evaluation else None
            )

        if prompt.memory_settings.persist_turns:
            await self.context_manager.update_context(session_id, {
                "role": "user",
                "content": state["user_input"],
                "run_id": state["run_id"]
            })
            await self.context_manager.update_context(session_id, {
                "role": "assistant",
                "content": state["output"] or "",
                "run_id": state["run_id"],
                "store_in_memory": True,
                "memory_content": f"User: {state['user_input']}\nAssistant: {state['output'] or ''}",
                "metadata": {"prompt": prompt.name, "run_id": state["run_id"]}
            })

        await self.context_manager.update_context(session_id, {
            "state_update": {"status": status.value, "run_id": state["run_id"]}
        })

        return {"status": status.value, "output": state["output"], "node_trace": ["finalizer"]}

    async def error_handler_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Record the failure and end the run"""

        error = state.get("error") or "Unknown error"
        session_id = state["session_id"]
        logger.error("Prompt run failed", error=error, session_id=session_id)

        await self.context_manager.update_context(session_id, {
            "state_update": {"status": RunStatus.FAILED.value, "run_id": state["run_id"], "error": error}
        })
        metrics.increment_counter("prompt_runs.failed", tags={"prompt": state["prompt"].name})

        return {
            "status": RunStatus.FAILED.value,
            "errors": [{
                "error": error,
                "node": state["node_trace"][-1] if state["node_trace"] else None,
                "timestamp": datetime.utcnow().isoformat()
            }],
            "node_trace": ["error_handler"]
        }

    def check_prompt_built(self, state: WorkflowState) -> Literal["ready", "error"]:
        """Route after prompt building"""

        route = "error" if state.get("error") else "ready"
        self._log_transition(state, "prompt_builder", route)
        return route

    def route_after_llm(self, state: WorkflowState) -> Literal["tool_calls", "answer", "error"]:
        """Route on the model's response"""

        if state.get("error"):
            route = "error"
        else:
            last_message = state["messages"][-1]
            route = "tool_calls" if isinstance(last_message, AIMessage) and last_message.tool_calls else "answer"

        self._log_transition(state, "llm_caller", route)
        return route

    def route_after_evaluation(self, state: WorkflowState) -> Literal["passed", "refine", "exhausted", "error"]:
        """Decide whether to accept, refine or give up on the answer"""

        if state.get("error"):
            route = "error"
        elif state["evaluation"].passed:
            route = "passed"
        elif state["refinements"] < self.settings.max_refinements:
            route = "refine"
        else:
            route = "exhausted"

        self._log_transition(state, "output_evaluator", route)
        return route

    def _log_transition(self, state: WorkflowState, from_node: str, condition: str):
        prompt_logger.log_workflow_transition(
            session_id=state["session_id"],
            from_node=from_node,
            to_node=condition,
            condition=condition,
            state_summary={"iterations": state["iterations"], "refinements": state["refinements"]}
        )

    async def run(
        self,
        prompt: Prompt,
        user_input: str,
        variables: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        granted_permissions: Optional[Iterable[str]] = None,
        streaming_handler: Optional[Any] = None
    ) -> PromptRunResult:
        """Run a prompt to completion and return the full run record"""

        session_id = session_id or str(uuid4())
        run_id = f"run_{uuid4().hex}"

        initial_state: WorkflowState = {
            "messages": [],
            "prompt": prompt,
            "user_input": user_input,
            "variables": dict(variables or {}),
            "session_id": session_id,
            "run_id": run_id,
            "granted_permissions": list(granted_permissions or []),
            "output": None,
            "evaluation": None,
            "tool_results": [],
            "node_trace": [],
            "errors": [],
            "iterations": 0,
            "refinements": 0,
            "status": RunStatus.PENDING.value,
            "error": None
        }

        config = {
            "recursion_limit": 4 * (self.settings.max_iterations + self.settings.max_refinements) + 10
        }

        started_at = datetime.utcnow()
        final_state: Dict[str, Any] = dict(initial_state)

        with structlog.contextvars.bound_contextvars(run_id=run_id, session_id=session_id):
            logger.info("Starting prompt run", prompt=prompt.name)

            with self.observability.trace_run(
                prompt_name=prompt.name,
                session_id=session_id,
                run_id=run_id,
                input_data={"user_input": user_input, "variables": initial_state["variables"]},
                tags=prompt.tags
            ) as span:
                try:
                    async for mode, chunk in self.workflow.astream(
                        initial_state, config, stream_mode=["updates", "values"]
                    ):
                        if mode == "values":
                            final_state = chunk
                        elif streaming_handler is not None:
                            await streaming_handler.handle_update(session_id, chunk)
                except GraphRecursionError:
                    final_state = dict(final_state)
                    final_state["status"] = RunStatus.FAILED.value
                    final_state["errors"] = list(final_state.get("errors", [])) + [{
                        "error": "Workflow step limit reached",
                        "node": None,
                        "timestamp": datetime.utcnow().isoformat()
                    }]

                span.update(output=final_state.get("output"))

        result = self._build_result(final_state, started_at)
        metrics.record_latency(
            "prompt_run",
            (result.finished_at - started_at).total_seconds() * 1000,
            tags={"prompt": prompt.name, "status": result.status.value}
        )
        logger.info("Finished prompt run", prompt=prompt.name, **result.get_summary())

        return result

    async def run_named(self, prompt_name: str, user_input: str, **kwargs) -> PromptRunResult:
        """Run a prompt registered in the library"""

        prompt = self.prompt_library.get(prompt_name)
        return await self.run(prompt, user_input, **kwargs)

    def _build_result(self, state: Dict[str, Any], started_at: datetime) -> PromptRunResult:
        evaluation = state.get("evaluation")
        status = RunStatus(state.get("status") or RunStatus.FAILED.value)
        if status in (RunStatus.PENDING, RunStatus.RUNNING):
            status = RunStatus.FAILED

        return PromptRunResult(
            run_id=state["run_id"],
            session_id=state["session_id"],
            prompt_name=state["prompt"].name,
            status=status,
            output=state.get("output"),
            parsed_output=evaluation.parsed_output if evaluation else None,
            evaluation=evaluation,
            tool_results=list(state.get("tool_results", [])),
            iterations=state.get("iterations", 0),
            refinements=state.get("refinements", 0),
            node_trace=list(state.get("node_trace", [])),
            errors=list(state.get("errors", [])),
            started_at=started_at,
            finished_at=datetime.utcnow()
        )
