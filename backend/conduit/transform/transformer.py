from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from conduit.common.logging_setup import get_logger
from conduit.common.utils import get_by_path, set_by_path
from conduit.transform.errors import FunctionCallError, ParseError, TransformError
from conduit.transform.functions import FunctionRegistry, stringify
from conduit.transform.parser import Call, Literal, Node, Path, Pipe, parse_template

logger = get_logger(__name__)

# strings that read as "no" when a filter template renders to text
_FALSY_STRINGS = frozenset({"", "0", "false", "null"})


@dataclass
class RuleError:
    """A mapping rule that could not be applied."""

    index: int
    target: str | None
    expression: str | None
    error: str
    error_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "target": self.target,
            "expression": self.expression,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class TransformResult:
    output: dict[str, Any] = field(default_factory=dict)
    errors: list[RuleError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class DataTransformer:
    """
    Evaluates ``{{ expression }}`` templates and applies ordered mapping rules.

    The function registry is injected; nothing outside it can be called from a template.
    """

    def __init__(self, registry: FunctionRegistry):
        self.registry = registry

    def has_function(self, name: str) -> bool:
        return self.registry.has(name)

    def evaluate(self, template: str, context: Mapping[str, Any] | None = None) -> Any:
        """
        Evaluate a template against a context.

        A template that is exactly one expression returns the expression's native
        value (number, bool, dict, ...). Any surrounding or separating literal text
        makes the result a string with each value stringified in place.

        Raises:
            ParseError: malformed template
            UnknownFunction: call to a function that is not registered
            FunctionCallError: a registered function raised
        """
        parsed = parse_template(template)
        data = context or {}

        if parsed.is_single_expression:
            return self._evaluate_node(parsed.parts[0], data)  # type: ignore[arg-type]

        rendered: list[str] = []
        for part in parsed.parts:
            if isinstance(part, str):
                rendered.append(part)
            else:
                rendered.append(stringify(self._evaluate_node(part, data)))
        return "".join(rendered)

    def is_truthy(self, template: str, context: Mapping[str, Any] | None = None) -> bool:
        """Evaluate a filter template and interpret its result as a boolean."""
        value = self.evaluate(template, context)
        if isinstance(value, str):
            return value.strip().lower() not in _FALSY_STRINGS
        return bool(value)

    def transform(
        self, data: Mapping[str, Any], mappings: Iterable[Any]
    ) -> TransformResult:
        """
        Apply ordered `{expression, target}` rules to `data`.

        Each rule writes its value at the target's dot path in a fresh output dict.
        Rules sharing a target overwrite each other: last write wins. A rule that fails
        is skipped and reported in `errors`; the remaining rules still apply.
        """
        result = TransformResult()
        for index, rule in enumerate(mappings):
            expression, target = _rule_fields(rule)
            try:
                if not isinstance(expression, str) or not isinstance(target, str) or not target:
                    raise ParseError("Mapping rule requires a string expression and target")
                value = self.evaluate(expression, data)
            except TransformError as e:
                rule_error = RuleError(
                    index=index,
                    target=target if isinstance(target, str) else None,
                    expression=expression if isinstance(expression, str) else None,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result.errors.append(rule_error)
                logger.warning(
                    f"Mapping rule failed, index={index}, target={target}, "
                    f"error_type={rule_error.error_type}, error={rule_error.error}"
                )
                continue
            set_by_path(result.output, target, value)
        return result

    def validate_mappings(self, mappings: Iterable[Any]) -> list[RuleError]:
        """
        Check rules without evaluating them: syntax and registered function names only.
        """
        errors: list[RuleError] = []
        for index, rule in enumerate(mappings):
            expression, target = _rule_fields(rule)
            try:
                if not isinstance(expression, str) or not isinstance(target, str) or not target:
                    raise ParseError("Mapping rule requires a string expression and target")
                self.validate_template(expression)
            except TransformError as e:
                errors.append(
                    RuleError(
                        index=index,
                        target=target if isinstance(target, str) else None,
                        expression=expression if isinstance(expression, str) else None,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                )
        return errors

    def validate_template(self, template: str) -> None:
        """
        Raises:
            ParseError: the template does not parse
            UnknownFunction: the template calls a function that is not registered
        """
        for node in parse_template(template).expressions:
            self._check_functions(node)

    def _check_functions(self, node: Node) -> None:
        match node:
            case Call(name=name, args=args):
                self.registry.get(name)
                for arg in args:
                    self._check_functions(arg)
            case Pipe(value=value, name=name, args=args):
                self._check_functions(value)
                self.registry.get(name)
                for arg in args:
                    self._check_functions(arg)

    def _evaluate_node(self, node: Node, data: Mapping[str, Any]) -> Any:
        match node:
            case Literal(value=value):
                return value
            case Path(path=path):
                return get_by_path(data, path)
            case Call(name=name, args=args):
                function = self.registry.get(name)
                return self._call(name, function, [self._evaluate_node(a, data) for a in args])
            case Pipe(value=value, name=name, args=args):
                function = self.registry.get(name)
                piped = self._evaluate_node(value, data)
                return self._call(
                    name, function, [piped, *(self._evaluate_node(a, data) for a in args)]
                )
        raise ParseError(f"Unsupported expression node: {node!r}")

    @staticmethod
    def _call(name: str, function: Any, args: list[Any]) -> Any:
        try:
            return function(*args)
        except TransformError:
            raise
        except Exception as e:
            raise FunctionCallError(name, e) from e


def _rule_fields(rule: Any) -> tuple[Any, Any]:
    if isinstance(rule, Mapping):
        return rule.get("expression"), rule.get("target")
    return getattr(rule, "expression", None), getattr(rule, "target", None)
