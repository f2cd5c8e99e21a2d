from typing import Dict, Any, Iterable
import jsonschema

from promptkit.domain.errors import ToolValidationError, ToolPermissionError
from promptkit.domain.models.prompt import ToolSpec


WILDCARD_PERMISSION = "*"


class ToolParameterValidator:
    """Parameter and permission validation for tool calls"""

    @staticmethod
    def validate_tool_call(
        spec: ToolSpec,
        arguments: Dict[str, Any],
        granted_permissions: Iterable[str] = ()
    ) -> None:
        """Raise if the arguments or the caller's permissions do not fit the tool"""

        # JSON Schema validation
        validator_cls = jsonschema.validators.validator_for(spec.parameters)
        validator = validator_cls(spec.parameters)
        errors = sorted(validator.iter_errors(arguments), key=lambda e: list(e.path))
        if errors:
            raise ToolValidationError(
                spec.name,
                [f"{'/'.join(str(p) for p in e.path) or '<root>'}: {e.message}" for e in errors]
            )

        # Permission validation
        granted = set(granted_permissions)
        if WILDCARD_PERMISSION in granted:
            return
        missing = set(spec.required_permissions) - granted
        if missing:
            raise ToolPermissionError(spec.name, missing)
