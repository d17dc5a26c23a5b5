"""
Custom rule engine.

Rules are user-authored checks of the form *path + condition + value*,
grouped into named rule sets. They are evaluated against a parsed
message independently of the built-in schema.

Conditions form a closed set (``Condition``) dispatched through the
``CONDITION_EVALUATORS`` table, so adding a condition means adding one
enum member and one predicate.
"""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from .exceptions import HL7Error, RuleDefinitionError, ValidationRuleEvaluationError
from .issues import Findings, IssueSource, Severity, ValidationIssue
from .models import Message
from .paths import parse_path

logger = structlog.get_logger(__name__)


class Condition(str, Enum):
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    CONTAINS = "contains"
    MATCHES_REGEX = "matchesRegex"


def _is_empty(value: Optional[str]) -> bool:
    return value is None or value == ""


def _matches_regex(value: Optional[str], pattern: Optional[str]) -> bool:
    """Violated unless ``value`` matches; an invalid pattern never violates."""
    if not pattern:
        return True
    try:
        regex = _compile(pattern)
    except re.error as e:
        logger.warning("Invalid regex pattern", pattern=pattern, error=str(e))
        return False
    if not isinstance(value, str):
        return True
    return regex.search(value) is None


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern)


# Condition -> predicate(value, comparison) returning True when violated
CONDITION_EVALUATORS: Dict[Condition, Callable[[Optional[str], Optional[str]], bool]] = {
    Condition.EXISTS: lambda value, _: _is_empty(value),
    Condition.NOT_EXISTS: lambda value, _: not _is_empty(value),
    Condition.EQUALS: lambda value, expected: value != expected,
    Condition.NOT_EQUALS: lambda value, expected: value == expected,
    Condition.STARTS_WITH: lambda value, expected: (
        not isinstance(value, str) or not value.startswith(expected or "")
    ),
    Condition.ENDS_WITH: lambda value, expected: (
        not isinstance(value, str) or not value.endswith(expected or "")
    ),
    Condition.CONTAINS: lambda value, expected: (
        not isinstance(value, str) or (expected or "") not in value
    ),
    Condition.MATCHES_REGEX: _matches_regex,
}


def _pick(data: Mapping, camel: str, snake: str, default=None):
    if camel in data:
        return data[camel]
    return data.get(snake, default)


# Validation Rule
@dataclass(frozen=True)
class ValidationRule:
    name: str
    target_path: str
    condition: Condition = Condition.EXISTS
    value: Optional[str] = None
    severity: Severity = Severity.WARNING
    is_active: bool = True
    description: str = ""
    action: str = "warning"
    action_detail: Optional[str] = None
    rule_type: str = "custom"
    hl7_version: str = "2.5"
    rule_id: Optional[str] = None

    def __post_init__(self):
        # Plain strings are accepted and normalized to the enum members
        try:
            condition = Condition(self.condition)
        except ValueError:
            raise RuleDefinitionError(
                self.name,
                f"unknown condition '{self.condition}', expected one of "
                f"{', '.join(c.value for c in Condition)}",
            )
        try:
            severity = Severity(self.severity)
        except ValueError:
            raise RuleDefinitionError(self.name, f"unknown severity '{self.severity}'")

        object.__setattr__(self, "condition", condition)
        object.__setattr__(self, "severity", severity)

    @property
    def violation_message(self) -> str:
        return self.action_detail or f"Rule violation: {self.name}"

    @classmethod
    def from_dict(cls, data: Mapping) -> "ValidationRule":
        """
        Load a rule document.

        Keys are the camelCase names used by rule authoring tools
        (``targetPath``, ``isActive``, ``actionDetail``...); snake_case
        equivalents are accepted too.

        Raises:
            RuleDefinitionError: If the condition or severity is unknown,
                or the target path is missing
        """
        name = data.get("name") or "Custom Rule"
        target_path = _pick(data, "targetPath", "target_path")
        if not target_path:
            raise RuleDefinitionError(name, "targetPath is required")

        value = data.get("value")
        rule_id = _pick(data, "_id", "id")
        return cls(
            name=name,
            target_path=target_path,
            condition=data.get("condition") or Condition.EXISTS,
            value=None if value is None else str(value),
            severity=data.get("severity") or Severity.WARNING,
            is_active=_pick(data, "isActive", "is_active", True) is not False,
            description=data.get("description") or "",
            action=data.get("action") or "warning",
            action_detail=_pick(data, "actionDetail", "action_detail"),
            rule_type=_pick(data, "ruleType", "rule_type", "custom"),
            hl7_version=str(_pick(data, "hl7Version", "hl7_version", "2.5")),
            rule_id=None if rule_id is None else str(rule_id),
        )


# Rule Set
@dataclass(frozen=True)
class RuleSet:
    """A named, ordered, immutable collection of rules."""

    name: str
    rules: Tuple[ValidationRule, ...] = ()
    description: str = ""

    @property
    def active_rules(self) -> List[ValidationRule]:
        return [r for r in self.rules if r.is_active]

    @classmethod
    def from_dict(cls, data: Mapping) -> "RuleSet":
        """
        Load a rule set document ``{"name", "description", "rules": [...]}``.

        Raises:
            RuleDefinitionError: If any rule is invalid
        """
        rules = data.get("rules")
        if not isinstance(rules, list):
            raise RuleDefinitionError(data.get("name", "?"), "'rules' must be a list")
        return cls(
            name=data.get("name") or "Unnamed Rule Set",
            description=data.get("description") or "",
            rules=tuple(ValidationRule.from_dict(r) for r in rules),
        )


def create_custom_rule(**fields) -> ValidationRule:
    """
    Build a rule with authoring defaults.

    Defaults: name "Custom Rule", condition ``exists``, severity
    ``warning``, active.
    """
    fields.setdefault("name", "Custom Rule")
    fields.setdefault("target_path", "")
    fields.setdefault("rule_type", "custom")
    return ValidationRule(
        name=fields.pop("name"),
        target_path=fields.pop("target_path"),
        **fields,
    )


# Rule Execution Records
@dataclass
class RuleExecutionResult:
    rule_name: str
    success: bool
    violated: bool
    severity: Severity
    value: Optional[str] = None
    action: str = "warning"
    action_detail: Optional[str] = None
    execution_time_ms: float = 0.0
    error: Optional[str] = None
    rule_id: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            "rule_name": self.rule_name,
            "success": self.success,
            "violated": self.violated,
            "severity": self.severity.value,
            "value": self.value,
            "action": self.action,
            "execution_time_ms": round(self.execution_time_ms, 3),
        }
        if self.action_detail:
            result["action_detail"] = self.action_detail
        if self.error:
            result["error"] = self.error
        if self.rule_id:
            result["rule_id"] = self.rule_id
        return result


@dataclass
class RuleSetExecution:
    rule_set: str
    results: List[RuleExecutionResult] = field(default_factory=list)
    findings: Findings = field(default_factory=Findings)
    execution_time_ms: float = 0.0

    @property
    def summary(self) -> dict:
        violated = [r for r in self.results if r.violated]
        return {
            "total_rules": len(self.results),
            "passed_rules": sum(1 for r in self.results if r.success and not r.violated),
            "failed_rules": sum(1 for r in self.results if not r.success or r.violated),
            "errors": sum(1 for r in violated if r.severity is Severity.ERROR),
            "warnings": sum(1 for r in violated if r.severity is Severity.WARNING),
            "info": sum(1 for r in violated if r.severity is Severity.INFO),
            "execution_time_ms": round(self.execution_time_ms, 3),
        }

    def to_dict(self) -> dict:
        return {
            "rule_set": self.rule_set,
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary,
        }


# Rule Engine Class
class RuleEngine:
    """
    Evaluates rule sets against parsed messages.

    Each active rule is evaluated in rule-set order and in isolation: a
    rule that fails to evaluate is reported as a warning and never stops
    the remaining rules.

    Usage:
        engine = RuleEngine()
        findings = engine.evaluate(result.message, rule_set)
    """

    def evaluate(self, message: Message, rule_set: RuleSet) -> Findings:
        """
        Evaluate a rule set, returning violations as findings.

        Args:
            message: Parsed message
            rule_set: Rules to apply

        Returns:
            Findings with ``source`` set to custom on every issue
        """
        return self.execute(message, rule_set).findings

    def execute(self, message: Message, rule_set: RuleSet) -> RuleSetExecution:
        """Evaluate a rule set and keep the per-rule execution report."""
        started = time.perf_counter()
        execution = RuleSetExecution(rule_set=rule_set.name)

        for rule in rule_set.active_rules:
            result = self._execute_rule(message, rule)
            execution.results.append(result)

            if not result.success:
                execution.findings.add(
                    _rule_issue(rule, result.error, Severity.WARNING)
                )
            elif result.violated:
                execution.findings.add(
                    _rule_issue(rule, rule.violation_message, rule.severity)
                )

        execution.execution_time_ms = (time.perf_counter() - started) * 1000
        logger.debug("Rule set executed", rule_set=rule_set.name, **execution.summary)
        return execution

    def _execute_rule(self, message: Message, rule: ValidationRule) -> RuleExecutionResult:
        started = time.perf_counter()
        try:
            violated, value = self.evaluate_rule(message, rule)
        except ValidationRuleEvaluationError as e:
            logger.warning("Rule evaluation failed", rule=rule.name, error=str(e.cause))
            return RuleExecutionResult(
                rule_name=rule.name,
                success=False,
                violated=False,
                severity=rule.severity,
                action=rule.action,
                action_detail=rule.action_detail,
                execution_time_ms=(time.perf_counter() - started) * 1000,
                error=str(e),
                rule_id=rule.rule_id,
            )

        return RuleExecutionResult(
            rule_name=rule.name,
            success=True,
            violated=violated,
            severity=rule.severity,
            value=value,
            action=rule.action,
            action_detail=rule.action_detail,
            execution_time_ms=(time.perf_counter() - started) * 1000,
            rule_id=rule.rule_id,
        )

    def evaluate_rule(self, message: Message, rule: ValidationRule) -> Tuple[bool, Optional[str]]:
        """
        Evaluate one rule.

        Returns:
            Tuple of (violated, resolved value)

        Raises:
            ValidationRuleEvaluationError: If the rule cannot be evaluated,
                e.g. its target path is malformed
        """
        try:
            value = message.text_at(rule.target_path)
            predicate = CONDITION_EVALUATORS[rule.condition]
            return predicate(value, rule.value), value
        except (HL7Error, KeyError, TypeError, ValueError) as e:
            raise ValidationRuleEvaluationError(rule.name, e) from e


def _rule_issue(rule: ValidationRule, message: str, severity: Severity) -> ValidationIssue:
    segment, field_index, occurrence = _locate(rule.target_path)
    return ValidationIssue(
        segment=segment,
        field=field_index,
        occurrence=occurrence,
        message=message,
        severity=severity,
        source=IssueSource.CUSTOM,
        rule_name=rule.name,
    )


def _locate(target_path: str) -> Tuple[str, int, int]:
    try:
        fp = parse_path(target_path)
    except HL7Error:
        return target_path.split(".")[0], 0, 1
    return fp.segment, fp.field or 0, fp.occurrence


# Convenience function
def evaluate_rules(message: Message, rule_set: RuleSet) -> Findings:
    """Evaluate ``rule_set`` against a parsed message."""
    return RuleEngine().evaluate(message, rule_set)
