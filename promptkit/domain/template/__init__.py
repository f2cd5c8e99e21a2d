from .template_engine import PromptTemplateEngine
from .prompt_library import PromptLibrary

__all__ = ["PromptTemplateEngine", "PromptLibrary"]
