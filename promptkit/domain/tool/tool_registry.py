from typing import Dict, List, Any, Optional, Callable, get_type_hints
import inspect
import structlog

from promptkit.domain.errors import ToolExistsError, ToolNotFoundError
from promptkit.domain.models.prompt import ToolSpec

logger = structlog.get_logger(__name__)


def _json_type(py_type: Any) -> Optional[str]:
    """Map a Python annotation to a JSON schema type"""

    origin = getattr(py_type, "__origin__", None)
    if py_type is bool:
        return "boolean"
    if py_type is str:
        return "string"
    if py_type is int:
        return "integer"
    if py_type is float:
        return "number"
    if py_type is list or origin is list:
        return "array"
    if py_type is dict or origin is dict:
        return "object"
    return None


def schema_from_signature(func: Callable[..., Any]) -> Dict[str, Any]:
    """Build a JSON schema for a callable's keyword arguments"""

    signature = inspect.signature(func)
    try:
        hints = get_type_hints(func)
    except (NameError, TypeError):
        hints = {}

    properties: Dict[str, Any] = {}
    required: List[str] = []

    for param_name, param in signature.parameters.items():
        if param_name in ("self", "cls"):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue

        json_type = _json_type(hints.get(param_name, Any))
        properties[param_name] = {"type": json_type} if json_type else {}

        if param.default is inspect.Parameter.empty:
            required.append(param_name)
        else:
            properties[param_name]["default"] = param.default

    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


class ToolRegistry:
    """Registry for managing available tools and their callables"""

    def __init__(self):
        self.tools: Dict[str, ToolSpec] = {}
        self.functions: Dict[str, Callable[..., Any]] = {}
        self.tool_categories: Dict[str, List[str]] = {}

    def register(self, spec: ToolSpec, func: Callable[..., Any]) -> ToolSpec:
        """Register a tool specification with the callable that implements it"""

        if spec.name in self.tools:
            raise ToolExistsError(f"Tool '{spec.name}' is already registered")
        if not callable(func):
            raise TypeError(f"Tool '{spec.name}' implementation is not callable")

        self.tools[spec.name] = spec
        self.functions[spec.name] = func
        self.tool_categories.setdefault(spec.category, []).append(spec.name)

        logger.info("Registered tool", tool=spec.name, category=spec.category)
        return spec

    def register_function(
        self,
        func: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        category: str = "general",
        required_permissions: Optional[List[str]] = None,
        timeout_seconds: float = 30.0
    ) -> ToolSpec:
        """Register a plain function, inferring its schema when none is given"""

        spec = ToolSpec(
            name=name or func.__name__,
            description=description or inspect.getdoc(func) or "",
            parameters=parameters or schema_from_signature(func),
            category=category,
            required_permissions=required_permissions or [],
            timeout_seconds=timeout_seconds
        )
        return self.register(spec, func)

    def tool(self, **options) -> Callable:
        """Decorator form of register_function"""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register_function(func, **options)
            return func

        return decorator

    def unregister(self, name: str) -> bool:
        """Remove a tool, returning whether it existed"""

        spec = self.tools.pop(name, None)
        if spec is None:
            return False

        self.functions.pop(name, None)
        names = self.tool_categories.get(spec.category, [])
        if name in names:
            names.remove(name)
        if not names:
            self.tool_categories.pop(spec.category, None)
        return True

    def has(self, name: str) -> bool:
        return name in self.tools

    def get_spec(self, name: str) -> ToolSpec:
        """Get the specification of a registered tool"""

        try:
            return self.tools[name]
        except KeyError:
            raise ToolNotFoundError(f"Tool '{name}' is not registered") from None

    def get(self, name: str) -> Callable[..., Any]:
        """Get the callable implementing a registered tool"""

        try:
            return self.functions[name]
        except KeyError:
            raise ToolNotFoundError(f"Tool '{name}' is not registered") from None

    def list_specs(self) -> List[ToolSpec]:
        """Get all registered tool specifications"""

        return list(self.tools.values())

    def names(self) -> List[str]:
        return list(self.tools)

    def get_tools_by_category(self, category: str) -> List[ToolSpec]:
        """Get tools by category"""

        tool_names = self.tool_categories.get(category, [])
        return [self.tools[name] for name in tool_names if name in self.tools]

    def search_tools(self, query: str) -> List[ToolSpec]:
        """Search tools by name or description"""

        query_lower = query.lower()
        return [
            spec for spec in self.tools.values()
            if query_lower in spec.name.lower() or query_lower in spec.description.lower()
        ]

    def to_openai_tools(self, names: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """Function-calling definitions for the given tools, or all tools"""

        selected = self.tools.keys() if names is None else names
        return [self.get_spec(name).to_openai_tool() for name in selected]
