"""
Attribute Policy Evaluator (ABAC).

Stored policy conditions are JSON documents. They are parsed once into a
tagged tree of Leaf, AndNode and OrNode values and then evaluated
against the namespaced attribute map built by the AttributeStore:

    {"attribute": "subject.department", "operator": "equals", "value": "Finance"}
    {"operator": "OR", "conditions": [...]}
    [...]                                   implicit AND
    {"subject.department": "Finance", ...}  implicit AND of equality checks

`user.*` is accepted as an alias of `subject.*`. Dotted paths descend into
JSON-valued attributes. AND stops at the first failure, OR at the first
success.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from accessgate.attributes import AttributeStore
from accessgate.errors import PolicyMisconfiguration
from accessgate.models import AccessContext, AccessPolicy, CheckResult, PolicyType, new_id, utcnow
from accessgate.store import Store


logger = logging.getLogger(__name__)

NAMESPACES = ("subject", "resource", "environment")
NAMESPACE_ALIASES = {"user": "subject"}

OPERATOR_ALIASES = {
    "==": "equals",
    "!=": "not_equals",
    ">": "greater_than",
    ">=": "greater_than_or_equal",
    "<": "less_than",
    "<=": "less_than_or_equal",
}

OPERATORS = frozenset({
    "equals",
    "not_equals",
    "in",
    "not_in",
    "greater_than",
    "greater_than_or_equal",
    "less_than",
    "less_than_or_equal",
    "contains",
    "starts_with",
    "ends_with",
    "exists",
    "not_exists",
})

_NUMERIC = {
    "greater_than": (lambda a, b: a > b, "not greater than"),
    "greater_than_or_equal": (lambda a, b: a >= b, "not >="),
    "less_than": (lambda a, b: a < b, "not less than"),
    "less_than_or_equal": (lambda a, b: a <= b, "not <="),
}


@dataclass(frozen=True)
class Leaf:
    attribute: str
    operator: str
    value: Any = None


@dataclass(frozen=True)
class AndNode:
    children: tuple["Condition", ...] = ()


@dataclass(frozen=True)
class OrNode:
    children: tuple["Condition", ...] = ()


Condition = Union[Leaf, AndNode, OrNode]


def canonical_operator(operator: str) -> str:
    op = OPERATOR_ALIASES.get(operator, operator)
    if op not in OPERATORS:
        raise PolicyMisconfiguration(f"Unknown operator: {operator}")
    return op


def parse_conditions(raw: Any) -> Condition:
    """
    Parse a stored condition document into a condition tree.

    Raises:
        PolicyMisconfiguration: Unknown operator or unsupported node shape
    """
    if raw is None:
        return AndNode()

    if isinstance(raw, list):
        return AndNode(tuple(parse_conditions(item) for item in raw))

    if not isinstance(raw, dict):
        raise PolicyMisconfiguration(f"Unsupported condition node: {raw!r}")

    if "attribute" in raw and "operator" in raw:
        return Leaf(
            attribute=str(raw["attribute"]),
            operator=canonical_operator(str(raw["operator"])),
            value=raw.get("value"),
        )

    operator = raw.get("operator")
    if isinstance(operator, str) and operator.upper() in ("AND", "OR"):
        children = tuple(parse_conditions(item) for item in raw.get("conditions") or [])
        return AndNode(children) if operator.upper() == "AND" else OrNode(children)

    # Implicit AND: nested documents or attribute/value equality pairs
    children = []
    for key, value in raw.items():
        if isinstance(value, (dict, list)):
            children.append(parse_conditions(value))
        else:
            children.append(Leaf(attribute=key, operator="equals", value=value))
    return AndNode(tuple(children))


def _nested(container: Any, path: list[str]) -> Any:
    current = container
    for key in path:
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return None
    return current


def lookup(path: str, attributes: dict[str, dict[str, Any]]) -> Any:
    """Resolve a dotted attribute path; unqualified paths search every namespace."""
    head, _, rest = path.partition(".")
    namespace = NAMESPACE_ALIASES.get(head, head)

    if namespace in NAMESPACES and rest:
        return _nested(attributes.get(namespace, {}), rest.split("."))

    for namespace in NAMESPACES:
        value = _nested(attributes.get(namespace, {}), path.split("."))
        if value is not None:
            return value
    return None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_list(value: Any) -> list:
    return list(value) if isinstance(value, (list, tuple, set, frozenset)) else [value]


def evaluate_leaf(leaf: Leaf, attributes: dict[str, dict[str, Any]]) -> CheckResult:
    actual = lookup(leaf.attribute, attributes)
    expected = leaf.value
    name = leaf.attribute
    op = leaf.operator

    if op == "equals":
        if actual == expected:
            return CheckResult.allow()
        return CheckResult.deny(f"Attribute {name} ({actual}) does not equal {expected}")

    if op == "not_equals":
        if actual != expected:
            return CheckResult.allow()
        return CheckResult.deny(f"Attribute {name} ({actual}) equals {expected}")

    if op == "in":
        values = _as_list(expected)
        if actual in values:
            return CheckResult.allow()
        return CheckResult.deny(f"Attribute {name} ({actual}) not in {', '.join(map(str, values))}")

    if op == "not_in":
        values = _as_list(expected)
        if actual not in values:
            return CheckResult.allow()
        return CheckResult.deny(f"Attribute {name} ({actual}) in {', '.join(map(str, values))}")

    if op in _NUMERIC:
        compare, phrase = _NUMERIC[op]
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            return CheckResult.deny(f"Attribute {name} ({actual}) is not comparable to {expected}")
        if compare(left, right):
            return CheckResult.allow()
        return CheckResult.deny(f"Attribute {name} ({actual}) {phrase} {expected}")

    if op == "contains":
        if isinstance(actual, (list, tuple, set, frozenset)):
            found = expected in actual
        else:
            found = actual is not None and str(expected) in str(actual)
        if found:
            return CheckResult.allow()
        return CheckResult.deny(f"Attribute {name} ({actual}) does not contain {expected}")

    if op == "starts_with":
        if actual is not None and str(actual).startswith(str(expected)):
            return CheckResult.allow()
        return CheckResult.deny(f"Attribute {name} does not start with {expected}")

    if op == "ends_with":
        if actual is not None and str(actual).endswith(str(expected)):
            return CheckResult.allow()
        return CheckResult.deny(f"Attribute {name} does not end with {expected}")

    if op == "exists":
        if actual is not None:
            return CheckResult.allow()
        return CheckResult.deny(f"Attribute {name} does not exist")

    if op == "not_exists":
        if actual is None:
            return CheckResult.allow()
        return CheckResult.deny(f"Attribute {name} exists")

    raise PolicyMisconfiguration(f"Unknown operator: {op}")


def evaluate_condition(condition: Condition, attributes: dict[str, dict[str, Any]]) -> CheckResult:
    """Evaluate a parsed tree with short-circuit semantics."""
    if isinstance(condition, Leaf):
        return evaluate_leaf(condition, attributes)

    if isinstance(condition, AndNode):
        for child in condition.children:
            result = evaluate_condition(child, attributes)
            if not result.allowed:
                return result
        return CheckResult.allow()

    if isinstance(condition, OrNode):
        for child in condition.children:
            result = evaluate_condition(child, attributes)
            if result.allowed:
                return result
        return CheckResult.deny("None of the conditions matched")

    raise PolicyMisconfiguration(f"Unsupported condition node: {condition!r}")


class PolicyEvaluator:
    """
    Loads ABAC policies and evaluates them against resolved attributes.

    Missing, disabled and non-ABAC policies fail open.
    """

    def __init__(
        self,
        store: Store,
        attributes: AttributeStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.attributes = attributes
        self.clock = clock
        self._parsed: dict[str, Condition] = {}

    def compile(self, conditions: Any) -> Condition:
        """Parse a condition document, reusing earlier parses of the same document."""
        key = json.dumps(conditions, sort_keys=True, default=str)
        tree = self._parsed.get(key)
        if tree is None:
            tree = parse_conditions(conditions)
            self._parsed[key] = tree
        return tree

    def create_policy(
        self,
        name: str,
        resource: str,
        action: str,
        conditions: Any,
        priority: int = 0,
        enabled: bool = True,
        policy_id: Optional[str] = None,
    ) -> AccessPolicy:
        """Store an ABAC policy after checking that its conditions parse."""
        self.compile(conditions)
        policy = AccessPolicy(
            id=policy_id or new_id(),
            name=name,
            resource=resource,
            action=action,
            policy_type=PolicyType.ABAC,
            priority=priority,
            enabled=enabled,
            conditions=conditions,
        )
        return self.store.save_policy(policy)

    def evaluate_conditions(
        self,
        conditions: Any,
        attributes: dict[str, dict[str, Any]],
    ) -> CheckResult:
        tree = conditions if isinstance(conditions, (Leaf, AndNode, OrNode)) else self.compile(conditions)
        return evaluate_condition(tree, attributes)

    def evaluate_policy(
        self,
        policy_id: str,
        subject_id: str,
        resource_type: str,
        resource_id: str,
        context: Optional[AccessContext] = None,
    ) -> CheckResult:
        policy = self.store.get_policy(policy_id)

        if policy is None or not policy.enabled or policy.policy_type != PolicyType.ABAC:
            logger.warning(f"ABAC policy {policy_id} missing or disabled, allowing")
            return CheckResult.allow("Policy not found or disabled", fail_open=True)

        if not policy.conditions:
            return CheckResult.allow("No attribute conditions")

        attributes = self.attributes.resolve(subject_id, resource_type, resource_id, context)
        result = self.evaluate_conditions(policy.conditions, attributes)
        result.details.setdefault("policy_id", policy.id)
        return result
