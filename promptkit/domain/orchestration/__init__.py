from .prompt_orchestrator import PromptOrchestrator, WorkflowState

__all__ = ["PromptOrchestrator", "WorkflowState"]
