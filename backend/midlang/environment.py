"""Runtime environment for MidLang runs.

An `Environment` holds the two global namespaces of a script: variables
(name -> value) and functions (name -> single body line). The namespaces are
independent, so the same name can be bound in both. Nothing is ever deleted;
bindings live until the run is discarded.
"""

from typing import Any, Dict, Optional


class _Missing:
    """Sentinel type for lookups of unbound names.

    `None` is a legitimate variable value (undefined), so lookups need a
    separate marker for "no binding at all".
    """

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


class Environment:
    """Mutable variable and function bindings for one script run."""

    def __init__(
        self,
        variables: Optional[Dict[str, Any]] = None,
        functions: Optional[Dict[str, str]] = None,
    ):
        self.variables: Dict[str, Any] = dict(variables or {})
        self.functions: Dict[str, str] = dict(functions or {})

    # --- variables ------------------------------------------------------
    def assign(self, name: str, value: Any) -> None:
        self.variables[name] = value

    def has_variable(self, name: str) -> bool:
        return name in self.variables

    def lookup_variable(self, name: str) -> Any:
        """Return the value bound to `name`, or `MISSING` when unbound."""
        return self.variables.get(name, MISSING)

    # --- functions ------------------------------------------------------
    def define_function(self, name: str, body: str) -> None:
        self.functions[name] = body

    def lookup_function(self, name: str) -> Optional[str]:
        return self.functions.get(name)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Return plain-dict copies of both namespaces."""
        return {"variables": dict(self.variables), "functions": dict(self.functions)}
