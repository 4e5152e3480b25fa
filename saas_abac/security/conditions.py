"""
Condition Evaluator

Evaluates typed attribute predicates, time windows and IP/location
allow-lists against a policy evaluation context.

Every check here is fail-closed: an unknown operator, a type mismatch, an
unresolvable placeholder or a malformed time window makes the single
condition false instead of raising.
"""

import fnmatch
import ipaddress
import re
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from saas_abac.models.context import PolicyEvaluationContext
from saas_abac.models.policies import (
    OPERATORS_BY_TYPE,
    AttributeCondition,
    ConditionOperator,
    ConditionType,
    PolicyConditions,
    TimeWindow,
)


logger = structlog.get_logger(__name__)

MISSING = object()

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")
_TIME = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

_LOCATION_SEPARATORS = ("-", "/", ":")


def lookup_attribute(attributes: dict[str, Any], path: str) -> Any:
    """
    Look up a possibly dotted attribute path.

    A literal key containing dots takes precedence over nested traversal.
    Returns MISSING for absent or null values.
    """
    if path in attributes:
        value = attributes[path]
        return MISSING if value is None else value

    value: Any = attributes
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return MISSING
    return MISSING if value is None else value


def _day_of_week(timestamp: datetime) -> int:
    # 0 = Sunday
    return (timestamp.weekday() + 1) % 7


def _environment_local_time(timestamp: datetime, attributes: dict[str, Any]) -> Optional[datetime]:
    """
    Convert the request timestamp to the zone named by the environment's
    'timezone' attribute (UTC when absent). None for an unknown zone.
    """
    name = attributes.get("timezone") or "UTC"
    try:
        return timestamp.astimezone(ZoneInfo(name))
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        logger.debug("environment_invalid_timezone", timezone=name)
        return None


def resolve_path(context: PolicyEvaluationContext, path: str) -> Any:
    """
    Resolve a rooted attribute path such as 'subject.department',
    'resource.organizationId' or 'env.ipAddress' against the context.
    """
    root, _, rest = path.partition(".")

    if root == "action":
        return MISSING if rest else context.action
    if root in ("organizationId", "organization_id"):
        if rest or context.organization_id is None:
            return MISSING
        return context.organization_id

    if root == "subject":
        subject = context.subject
        builtins = {"id": subject.id, "roles": subject.roles, "groups": subject.groups}
        attributes = subject.attributes
    elif root == "resource":
        resource = context.resource
        builtins = {"type": resource.type, "id": resource.id}
        attributes = resource.attributes
    elif root in ("env", "environment"):
        env = context.environment
        timestamp = env.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        local = _environment_local_time(timestamp, env.attributes)
        builtins = {
            "timestamp": timestamp,
            "ipAddress": env.ip_address,
            "ip_address": env.ip_address,
            "location": env.location,
            "dayOfWeek": _day_of_week(local) if local is not None else None,
            "time": local.strftime("%H:%M") if local is not None else None,
        }
        attributes = env.attributes
    else:
        return MISSING

    if not rest:
        return MISSING
    if rest in builtins and builtins[rest] is not None:
        return builtins[rest]
    return lookup_attribute(attributes, rest)


def resolve_placeholders(value: Any, context: PolicyEvaluationContext) -> Any:
    """
    Substitute ${path} references in a condition value.

    A value consisting of a single placeholder keeps the referenced value's
    type; embedded placeholders are interpolated as text. Returns MISSING
    when any reference cannot be resolved.
    """
    if isinstance(value, str):
        if "${" not in value:
            return value

        whole = _PLACEHOLDER.fullmatch(value)
        if whole:
            return resolve_path(context, whole.group(1).strip())

        unresolved = False

        def _substitute(match: re.Match) -> str:
            nonlocal unresolved
            resolved = resolve_path(context, match.group(1).strip())
            if resolved is MISSING:
                unresolved = True
                return match.group(0)
            return str(resolved)

        text = _PLACEHOLDER.sub(_substitute, value)
        return MISSING if unresolved else text

    if isinstance(value, (list, tuple)):
        items = [resolve_placeholders(item, context) for item in value]
        if any(item is MISSING for item in items):
            return MISSING
        return items

    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _matches_type(condition_type: ConditionType, value: Any) -> bool:
    if condition_type == ConditionType.STRING:
        return isinstance(value, str)
    if condition_type == ConditionType.NUMBER:
        return _is_number(value)
    if condition_type == ConditionType.BOOLEAN:
        return isinstance(value, bool)
    return isinstance(value, (list, tuple, set))


def _parse_time(value: str) -> Optional[tuple[int, bool]]:
    """Parse HH:MM[:SS] into seconds since midnight and whether seconds were given."""
    match = _TIME.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        return None
    return hours * 3600 + minutes * 60 + seconds, match.group(3) is not None


def _apply_string(op: ConditionOperator, actual: str, expected: Any) -> bool:
    if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if not isinstance(expected, (list, tuple, set)):
            return False
        found = actual in expected
        return found if op == ConditionOperator.IN else not found

    if not isinstance(expected, str):
        return False

    match op:
        case ConditionOperator.EQUALS:
            return actual == expected
        case ConditionOperator.NOT_EQUALS:
            return actual != expected
        case ConditionOperator.CONTAINS:
            return expected in actual
        case ConditionOperator.NOT_CONTAINS:
            return expected not in actual
        case ConditionOperator.STARTS_WITH:
            return actual.startswith(expected)
        case ConditionOperator.ENDS_WITH:
            return actual.endswith(expected)
        case _:
            return False


def _apply_number(op: ConditionOperator, actual: float, expected: Any) -> bool:
    if op == ConditionOperator.BETWEEN:
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            return False
        low, high = expected
        if not (_is_number(low) and _is_number(high)):
            return False
        return low <= actual <= high

    if not _is_number(expected):
        return False

    match op:
        case ConditionOperator.EQUALS:
            return actual == expected
        case ConditionOperator.NOT_EQUALS:
            return actual != expected
        case ConditionOperator.GREATER_THAN:
            return actual > expected
        case ConditionOperator.GREATER_THAN_OR_EQUALS:
            return actual >= expected
        case ConditionOperator.LESS_THAN:
            return actual < expected
        case ConditionOperator.LESS_THAN_OR_EQUALS:
            return actual <= expected
        case _:
            return False


def _apply_array(op: ConditionOperator, actual: Any, expected: Any) -> bool:
    match op:
        case ConditionOperator.CONTAINS:
            return expected in actual
        case ConditionOperator.NOT_CONTAINS:
            return expected not in actual
        case ConditionOperator.IN | ConditionOperator.NOT_IN:
            if not isinstance(expected, (list, tuple, set)):
                return False
            overlap = any(item in expected for item in actual)
            return overlap if op == ConditionOperator.IN else not overlap
        case _:
            return False


class ConditionEvaluator:
    """
    Evaluates policy conditions.

    Stateless; a single instance may be shared between threads.
    """

    def evaluate_condition(
        self,
        condition: AttributeCondition,
        actual: Any,
        context: PolicyEvaluationContext
    ) -> bool:
        """
        Evaluate one typed predicate against an already resolved value.

        Args:
            condition: The predicate (operator, value and declared type)
            actual: Attribute value from the context, or MISSING
            context: Context used to resolve ${...} placeholders

        Returns:
            Whether the predicate holds
        """
        try:
            operator = ConditionOperator(condition.operator)
            condition_type = ConditionType(condition.type)
        except ValueError:
            logger.debug(
                "condition_invalid",
                attribute=condition.attribute,
                operator=condition.operator,
                type=condition.type,
            )
            return False

        if operator not in OPERATORS_BY_TYPE[condition_type]:
            logger.debug(
                "condition_operator_not_allowed",
                attribute=condition.attribute,
                operator=operator.value,
                type=condition_type.value,
            )
            return False

        expected = resolve_placeholders(condition.value, context)
        if expected is MISSING:
            logger.debug("condition_placeholder_unresolved", attribute=condition.attribute)
            return False

        if actual is MISSING or actual is None:
            return False
        if not _matches_type(condition_type, actual):
            return False

        try:
            if condition_type == ConditionType.STRING:
                return _apply_string(operator, actual, expected)
            if condition_type == ConditionType.NUMBER:
                return _apply_number(operator, actual, expected)
            if condition_type == ConditionType.BOOLEAN:
                return isinstance(expected, bool) and actual is expected
            return _apply_array(operator, actual, expected)
        except TypeError:
            return False

    def evaluate_attribute_conditions(
        self,
        conditions: dict[str, AttributeCondition],
        attributes: dict[str, Any],
        context: PolicyEvaluationContext
    ) -> list[str]:
        """
        Evaluate a map of predicates against an attribute dictionary.

        Every predicate is evaluated; the returned list names the ones that
        failed (empty means all held).
        """
        failures = []
        for key, condition in conditions.items():
            attribute = condition.attribute or key
            actual = lookup_attribute(attributes, attribute)
            if not self.evaluate_condition(condition, actual, context):
                failures.append(
                    f"{attribute} {condition.operator} {condition.value!r} failed"
                )
        return failures

    def check_conditions(
        self,
        conditions: Optional[PolicyConditions],
        context: PolicyEvaluationContext
    ) -> list[str]:
        """
        Evaluate all condition groups of a policy.

        Returns the failures of every group (empty means the policy's
        conditions are satisfied).
        """
        if conditions is None:
            return []

        env = context.environment
        failures = []

        window = conditions.time_window
        if window is not None and not self.matches_time_window(window, env.timestamp):
            failures.append(
                f"outside time window {window.start or '*'}-{window.end or '*'} "
                f"{window.timezone} days={window.days_of_week or 'any'}"
            )

        if not self.matches_ip_address(conditions.ip_addresses, env.ip_address):
            failures.append(f"ip address {env.ip_address!r} not allowed")

        if not self.matches_location(conditions.locations, env.location):
            failures.append(f"location {env.location!r} not allowed")

        for key, condition in conditions.custom_conditions.items():
            path = condition.attribute or key
            actual = resolve_path(context, path)
            if not self.evaluate_condition(condition, actual, context):
                failures.append(f"{path} {condition.operator} {condition.value!r} failed")

        return failures

    def conditions_satisfied(
        self,
        conditions: Optional[PolicyConditions],
        context: PolicyEvaluationContext
    ) -> bool:
        return not self.check_conditions(conditions, context)

    def matches_time_window(self, window: TimeWindow, timestamp: datetime) -> bool:
        """
        Check a timestamp against a time window.

        Supports windows wrapping past midnight (end before start). A bound
        given as HH:MM covers the whole minute.
        """
        try:
            zone = ZoneInfo(window.timezone or "UTC")
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("time_window_invalid_timezone", timezone=window.timezone)
            return False

        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        local = timestamp.astimezone(zone)

        if window.start or window.end:
            current = local.hour * 3600 + local.minute * 60 + local.second
            start = _parse_time(window.start) if window.start else None
            end = _parse_time(window.end) if window.end else None
            if (window.start and start is None) or (window.end and end is None):
                logger.debug("time_window_invalid_bounds", start=window.start, end=window.end)
                return False

            start_s = start[0] if start else None
            end_s = None
            if end:
                end_s = end[0] if end[1] else end[0] + 59

            if start_s is not None and end_s is not None:
                if start_s <= end_s:
                    in_window = start_s <= current <= end_s
                else:
                    in_window = current >= start_s or current <= end_s
            elif start_s is not None:
                in_window = current >= start_s
            else:
                in_window = current <= end_s

            if not in_window:
                return False

        if window.days_of_week and _day_of_week(local) not in window.days_of_week:
            return False

        return True

    def matches_ip_address(self, allowed: list[str], ip_address: Optional[str]) -> bool:
        """Check an address against an allow-list (empty list allows all)."""
        if not allowed:
            return True
        if not ip_address:
            return False
        ip_address = ip_address.strip()
        return any(self._ip_entry_matches(entry.strip(), ip_address) for entry in allowed)

    @staticmethod
    def _ip_entry_matches(entry: str, ip_address: str) -> bool:
        if entry == ip_address:
            return True
        if "/" in entry:
            try:
                network = ipaddress.ip_network(entry, strict=False)
                return ipaddress.ip_address(ip_address) in network
            except ValueError:
                return False
        if "*" in entry:
            return fnmatch.fnmatchcase(ip_address, entry)
        if entry.endswith((".", ":")):
            return ip_address.startswith(entry)
        return False

    def matches_location(self, allowed: list[str], location: Optional[str]) -> bool:
        """Check a location against an allow-list (empty list allows all)."""
        if not allowed:
            return True
        if not location:
            return False
        for entry in allowed:
            if entry == location:
                return True
            if "*" in entry and fnmatch.fnmatchcase(location, entry):
                return True
            if entry.endswith(_LOCATION_SEPARATORS) and location.startswith(entry):
                return True
        return False
