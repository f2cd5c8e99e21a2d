"""
Prompt template engine.

Turns a declarative Prompt plus caller-supplied variable values into the
chat messages sent to the model. Placeholders use f-string syntax
(``{destination}``); literal braces must be doubled.
"""

from typing import Dict, Any, List, Optional, Set
import json
import structlog

from langchain_core.messages import BaseMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder, PromptTemplate

from promptkit.domain.errors import TemplateError, MissingVariableError, VariableTypeError
from promptkit.domain.models.prompt import (
    Prompt, Context, Variable, VariableType, OutputFormatType
)

logger = structlog.get_logger(__name__)


_TRUE_STRINGS = {"true", "yes", "1", "on"}
_FALSE_STRINGS = {"false", "no", "0", "off"}


class PromptTemplateEngine:
    """Resolves variables and renders prompts into chat messages"""

    def __init__(self):
        self.chat_template = ChatPromptTemplate.from_messages([
            ("system", "{system}"),
            MessagesPlaceholder(variable_name="history", optional=True),
            ("human", "{input}"),
        ])

    def template_variables(self, prompt: Prompt) -> Set[str]:
        """Return every placeholder used by the prompt's templated text"""

        names: Set[str] = set()
        for text in self._template_texts(prompt):
            names.update(self._parse(text).input_variables)
        return names

    def resolve_variables(self, prompt: Prompt, values: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Apply defaults, check required variables and coerce declared types"""

        values = values or {}

        undeclared = self.template_variables(prompt) - {v.name for v in prompt.variables}
        if undeclared:
            raise TemplateError(
                f"Prompt '{prompt.name}' uses undeclared variables: {', '.join(sorted(undeclared))}"
            )

        extra = set(values) - {v.name for v in prompt.variables}
        if extra:
            logger.debug("Ignoring undeclared variable values", prompt=prompt.name, names=sorted(extra))

        resolved: Dict[str, Any] = {}
        missing = []
        for variable in prompt.variables:
            if variable.name in values and values[variable.name] is not None:
                resolved[variable.name] = self._coerce(variable, values[variable.name])
            elif variable.default is not None:
                resolved[variable.name] = self._coerce(variable, variable.default)
            elif variable.required:
                missing.append(variable.name)
            else:
                resolved[variable.name] = None

        if missing:
            raise MissingVariableError(missing)

        return resolved

    def render_system(
        self,
        prompt: Prompt,
        values: Optional[Dict[str, Any]] = None,
        contexts: Optional[List[Context]] = None
    ) -> str:
        """Render the system message for a prompt"""

        resolved = self.resolve_variables(prompt, values)
        text_values = {name: self._to_text(value) for name, value in resolved.items()}
        sections = []

        if prompt.role:
            persona = f"You are {prompt.role.name}."
            if prompt.role.description:
                persona += f" {prompt.role.description}"
            if prompt.role.persona_traits:
                persona += f"\nStyle: {', '.join(prompt.role.persona_traits)}."
            sections.append(persona)

        sections.append(self._format(prompt.instruction.text, text_values))

        if prompt.instruction.constraints:
            lines = [f"- {self._format(c, text_values)}" for c in prompt.instruction.constraints]
            sections.append("Constraints:\n" + "\n".join(lines))

        if prompt.instruction.examples:
            blocks = [
                f"Input: {self._format(e.input, text_values)}\nOutput: {self._format(e.output, text_values)}"
                for e in prompt.instruction.examples
            ]
            sections.append("Examples:\n" + "\n\n".join(blocks))

        output_section = self._render_output_format(prompt)
        if output_section:
            sections.append(output_section)

        if contexts:
            lines = [f"[{c.source}] {c.content}" for c in contexts]
            sections.append("Context:\n" + "\n".join(lines))

        return "\n\n".join(sections)

    def render(
        self,
        prompt: Prompt,
        values: Optional[Dict[str, Any]] = None,
        user_input: str = "",
        history: Optional[List[BaseMessage]] = None,
        contexts: Optional[List[Context]] = None
    ) -> List[BaseMessage]:
        """Render a prompt into system, history and user messages"""

        system = self.render_system(prompt, values, contexts)
        return self.chat_template.format_messages(
            system=system,
            history=list(history or []),
            input=user_input
        )

    def _render_output_format(self, prompt: Prompt) -> Optional[str]:
        """Describe the expected output shape"""

        output_format = prompt.output_format
        if not output_format:
            return None

        lines = []
        if output_format.type == OutputFormatType.JSON:
            lines.append("Respond with a single valid JSON value and nothing else.")
            if output_format.json_schema:
                lines.append(
                    "The JSON must match this schema:\n"
                    + json.dumps(output_format.json_schema, indent=2, sort_keys=True)
                )
        elif output_format.type == OutputFormatType.MARKDOWN:
            lines.append("Format your answer as Markdown.")

        if output_format.instructions:
            lines.append(output_format.instructions)
        if output_format.example:
            lines.append(f"Example output:\n{output_format.example}")

        if not lines:
            return None
        return "Output format:\n" + "\n".join(lines)

    def _template_texts(self, prompt: Prompt) -> List[str]:
        texts = [prompt.instruction.text]
        texts.extend(prompt.instruction.constraints)
        for example in prompt.instruction.examples:
            texts.extend([example.input, example.output])
        return texts

    def _parse(self, text: str) -> PromptTemplate:
        try:
            return PromptTemplate.from_template(text)
        except (ValueError, KeyError) as e:
            raise TemplateError(f"Invalid template {text[:60]!r}: {e}") from e

    def _format(self, text: str, values: Dict[str, str]) -> str:
        template = self._parse(text)
        try:
            return template.format(**{name: values[name] for name in template.input_variables})
        except (KeyError, IndexError, ValueError) as e:
            raise TemplateError(f"Failed to render template {text[:60]!r}: {e}") from e

    def _to_text(self, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, list):
            return ", ".join(self._to_text(v) for v in value)
        return str(value)

    def _coerce(self, variable: Variable, value: Any) -> Any:
        """Validate a value against the variable's declared type"""

        expected = variable.type

        if expected == VariableType.STRING:
            if isinstance(value, (str, int, float, bool)):
                return value if isinstance(value, str) else self._to_text(value)

        elif expected == VariableType.INTEGER:
            if isinstance(value, int) and not isinstance(value, bool):
                return value
            if isinstance(value, float) and value.is_integer():
                return int(value)
            if isinstance(value, str):
                try:
                    return int(value.strip())
                except ValueError:
                    pass

        elif expected == VariableType.NUMBER:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return value
            if isinstance(value, str):
                try:
                    return float(value.strip())
                except ValueError:
                    pass

        elif expected == VariableType.BOOLEAN:
            if isinstance(value, bool):
                return value
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in _TRUE_STRINGS:
                    return True
                if lowered in _FALSE_STRINGS:
                    return False

        elif expected == VariableType.LIST:
            if isinstance(value, (list, tuple)):
                return list(value)
            if isinstance(value, str):
                return [part.strip() for part in value.split(",") if part.strip()]

        raise VariableTypeError(variable.name, expected.value, value)
