"""
Exception hierarchy for promptkit.

All library errors inherit from PromptKitError so callers can catch
broad or specific exceptions as needed.
"""


class PromptKitError(Exception):
    """Base exception for all promptkit errors"""


class ConfigurationError(PromptKitError):
    """Raised when settings are missing or inconsistent"""


class TemplateError(PromptKitError):
    """Raised when a prompt template cannot be parsed or rendered"""


class MissingVariableError(TemplateError):
    """Raised when a required variable has no value and no default"""

    def __init__(self, names):
        self.names = sorted(names)
        super().__init__(f"Missing required variables: {', '.join(self.names)}")


class VariableTypeError(TemplateError):
    """Raised when a variable value does not match its declared type"""

    def __init__(self, name: str, expected: str, value):
        self.name = name
        self.expected = expected
        super().__init__(f"Variable '{name}' expects {expected}, got {type(value).__name__}")


class UnknownPromptError(PromptKitError):
    """Raised when a prompt name is not registered in the library"""


class PromptExistsError(PromptKitError):
    """Raised when registering a prompt name that is already taken"""


class ToolError(PromptKitError):
    """Base exception for tool registration and execution"""


class ToolNotFoundError(ToolError):
    """Raised when a tool name is not registered"""


class ToolExistsError(ToolError):
    """Raised when registering a tool name that is already taken"""


class ToolValidationError(ToolError):
    """Raised when tool arguments fail schema validation"""

    def __init__(self, tool_name: str, errors):
        self.tool_name = tool_name
        self.errors = list(errors)
        super().__init__(f"Invalid arguments for tool '{tool_name}': {'; '.join(self.errors)}")


class ToolPermissionError(ToolError):
    """Raised when a tool requires permissions the caller was not granted"""

    def __init__(self, tool_name: str, missing):
        self.tool_name = tool_name
        self.missing = sorted(missing)
        super().__init__(f"Tool '{tool_name}' requires permissions: {', '.join(self.missing)}")


class ToolTimeoutError(ToolError):
    """Raised when a tool exceeds its execution timeout"""


class LLMAdapterError(PromptKitError):
    """Raised when the language model call fails after all retries"""
