"""Errors raised while parsing or evaluating mapping templates."""


class TransformError(Exception):
    """Base exception for template parsing and evaluation errors."""

    pass


class ParseError(TransformError):
    """Malformed template: unbalanced braces or invalid expression syntax."""

    def __init__(self, message: str, template: str | None = None, position: int | None = None):
        detail = message if position is None else f"{message} (at position {position})"
        super().__init__(detail)
        self.template = template
        self.position = position


class UnknownFunction(TransformError):
    """Expression calls a function that is not in the injected registry."""

    def __init__(self, name: str):
        super().__init__(f"Unknown function: {name}")
        self.name = name


class FunctionCallError(TransformError):
    """A registered function raised while being called."""

    def __init__(self, name: str, error: Exception):
        super().__init__(f"Function {name} failed: {type(error).__name__}: {error}")
        self.name = name
        self.error = error
