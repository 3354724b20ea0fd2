"""Runtime settings and policy file loading."""

from saasguard.config.settings import Environment, SaaSGuardConfig, get_config, reset_config
from saasguard.config.loader import (
    ConfigurationError,
    expand_env_vars,
    load_policies,
    policy_warnings,
    validate_policy_config,
)

__all__ = [
    "ConfigurationError",
    "Environment",
    "SaaSGuardConfig",
    "expand_env_vars",
    "get_config",
    "load_policies",
    "policy_warnings",
    "reset_config",
    "validate_policy_config",
]
