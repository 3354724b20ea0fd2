"""Policy file loader and validator."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog
import yaml

from saasguard.core.events.topics import Topic
from saasguard.core.policies.conditions import ConditionError, parse_conditions
from saasguard.core.policies.models import Policy

logger = structlog.get_logger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid."""

    pass


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in configuration values.

    Supports ${VAR_NAME} syntax.

    Args:
        value: Configuration value (can be dict, list, str, etc.)

    Returns:
        Value with environment variables expanded
    """
    if isinstance(value, str):
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)

        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            if not env_value:
                logger.warning("environment_variable_not_set", var_name=var_name)
            value = value.replace(f"${{{var_name}}}", env_value)

        return value

    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [expand_env_vars(item) for item in value]

    return value


def validate_policy_config(config: Dict[str, Any], index: int = 0) -> None:
    """Validate one policy entry of a policy file.

    Args:
        config: Policy mapping
        index: Position in the file, used in error messages

    Raises:
        ConfigurationError: If the policy is invalid
    """
    label = config.get("name") or f"#{index + 1}"

    if not config.get("name"):
        raise ConfigurationError(f"Policy {label} is missing a name")

    trigger = config.get("trigger") or config.get("trigger_type")
    if not trigger:
        raise ConfigurationError(f"Policy '{label}' is missing a trigger")
    try:
        Topic.parse(trigger)
    except ValueError as e:
        raise ConfigurationError(f"Policy '{label}': {e}")

    actions = config.get("actions")
    if not isinstance(actions, list) or not actions:
        raise ConfigurationError(f"Policy '{label}' must define a non-empty actions list")
    for position, action in enumerate(actions):
        if not isinstance(action, dict) or not action.get("type"):
            raise ConfigurationError(f"Policy '{label}' action {position + 1} is missing a type")

    try:
        parse_conditions(config.get("conditions"))
    except ConditionError as e:
        raise ConfigurationError(f"Policy '{label}': {e}")

    for limit in ("cooldown_minutes", "max_executions_per_day"):
        value = config.get(limit)
        if value is not None and (not isinstance(value, int) or value < 0):
            raise ConfigurationError(f"Policy '{label}': {limit} must be a non-negative integer")


def load_policies(path: Union[str, Path], tenant_id: Optional[str] = None) -> List[Policy]:
    """Load and validate policies from a YAML file.

    The file holds a ``policies`` list and an optional top-level
    ``tenant_id`` applied to policies that do not name one.

    Args:
        path: Path to the policy file
        tenant_id: Tenant overriding the file's default tenant

    Returns:
        Validated Policy objects

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Policy file not found: {path}")

    try:
        with open(path, "r") as f:
            document = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in policy file: {e}")

    if not document:
        raise ConfigurationError("Policy file is empty")
    if not isinstance(document, dict) or not isinstance(document.get("policies"), list):
        raise ConfigurationError("Policy file must contain a 'policies' list")

    document = expand_env_vars(document)
    default_tenant = tenant_id or document.get("tenant_id")

    policies = []
    for index, entry in enumerate(document["policies"]):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Policy #{index + 1} must be a mapping")
        validate_policy_config(entry, index)
        if tenant_id:
            entry = dict(entry, tenant_id=tenant_id)
        try:
            policies.append(Policy.from_dict(entry, tenant_id=default_tenant))
        except ValueError as e:
            raise ConfigurationError(str(e))

    logger.info("policies_loaded", path=str(path), policies=len(policies))
    return policies


def policy_warnings(policies: Iterable[Policy], known_actions: Iterable[str]) -> List[str]:
    """Non-fatal problems: operators that never match and unknown action types."""
    known = set(known_actions)
    warnings = []

    for policy in policies:
        for operator_name in parse_conditions(policy.conditions).unsupported_operators():
            warnings.append(
                f"Policy '{policy.name}' uses unsupported operator '{operator_name}' and will never match"
            )
        for action in policy.actions:
            if action.type not in known:
                warnings.append(
                    f"Policy '{policy.name}' uses unknown action type '{action.type}'"
                )

    return warnings
