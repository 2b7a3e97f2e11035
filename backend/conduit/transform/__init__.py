"""
Expression-based payload mapping.

Templates embed ``{{ expression }}`` segments in literal text; mapping rules
``{expression, target}`` build an output document from an event context.
"""

from .errors import FunctionCallError, ParseError, TransformError, UnknownFunction
from .functions import ConfigSource, FunctionRegistry, build_default_registry
from .transformer import DataTransformer, RuleError, TransformResult

__all__ = [
    "ConfigSource",
    "DataTransformer",
    "FunctionCallError",
    "FunctionRegistry",
    "ParseError",
    "RuleError",
    "TransformError",
    "TransformResult",
    "UnknownFunction",
    "build_default_registry",
]
