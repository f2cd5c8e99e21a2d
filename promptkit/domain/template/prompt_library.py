from typing import Dict, List, Union
from pathlib import Path
import json
import structlog
from pydantic import ValidationError

from promptkit.domain.errors import UnknownPromptError, PromptExistsError, TemplateError
from promptkit.domain.models.prompt import Prompt

logger = structlog.get_logger(__name__)


class PromptLibrary:
    """Registry of named prompt definitions"""

    def __init__(self):
        self.prompts: Dict[str, Prompt] = {}

    def register(self, prompt: Prompt, overwrite: bool = False) -> Prompt:
        """Register a prompt under its name"""

        if prompt.name in self.prompts and not overwrite:
            raise PromptExistsError(f"Prompt '{prompt.name}' is already registered")

        self.prompts[prompt.name] = prompt
        logger.info("Registered prompt", prompt=prompt.name, version=prompt.version)
        return prompt

    def get(self, name: str) -> Prompt:
        """Get a prompt by name"""

        try:
            return self.prompts[name]
        except KeyError:
            raise UnknownPromptError(f"Prompt '{name}' is not registered") from None

    def list(self) -> List[Prompt]:
        """Get all registered prompts ordered by name"""

        return [self.prompts[name] for name in sorted(self.prompts)]

    def remove(self, name: str) -> bool:
        """Remove a prompt, returning whether it existed"""

        return self.prompts.pop(name, None) is not None

    def load_file(self, path: Union[str, Path], overwrite: bool = False) -> List[Prompt]:
        """Load one prompt, or a list of prompts, from a JSON file"""

        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise TemplateError(f"Prompt file {path} is not valid JSON: {e}") from e

        items = data if isinstance(data, list) else [data]
        loaded = []
        for item in items:
            try:
                prompt = Prompt.model_validate(item)
            except ValidationError as e:
                raise TemplateError(f"Invalid prompt definition in {path}: {e}") from e
            loaded.append(self.register(prompt, overwrite=overwrite))

        return loaded

    def load_directory(self, directory: Union[str, Path], overwrite: bool = False) -> List[Prompt]:
        """Load every *.json prompt file in a directory"""

        loaded = []
        for path in sorted(Path(directory).glob("*.json")):
            loaded.extend(self.load_file(path, overwrite=overwrite))

        logger.info("Loaded prompt directory", directory=str(directory), count=len(loaded))
        return loaded
