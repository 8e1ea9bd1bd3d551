"""
Configuration management and loading.

Handles plan limits and tracker settings from a YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from ai_quota_guard.core.plans import DEFAULT_PLAN_LIMITS, PlanLimits, PlanType, resolve_plan
from ai_quota_guard.core.quota import FailurePolicy


@dataclass(frozen=True)
class TrackerConfig:
    """Complete usage tracker configuration.

    Defaults reproduce the production constants.
    """
    plans: Dict[PlanType, PlanLimits] = field(default_factory=lambda: dict(DEFAULT_PLAN_LIMITS))
    redis_url: Optional[str] = None
    history_limit: int = 1000
    warning_threshold: float = 0.8
    failure_policy: FailurePolicy = FailurePolicy.FAIL_OPEN
    daily_ttl_days: int = 2
    monthly_ttl_days: int = 35
    stats_ttl_days: int = 90

    def __post_init__(self):
        """Validate tracker settings."""
        if self.history_limit <= 0:
            raise ValueError("history_limit must be > 0")
        if not 0 < self.warning_threshold <= 1:
            raise ValueError("warning_threshold must be in (0, 1]")
        for name in ("daily_ttl_days", "monthly_ttl_days", "stats_ttl_days"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        missing = set(PlanType) - set(self.plans)
        if missing:
            raise ValueError(f"Missing plan limits for: {sorted(p.value for p in missing)}")

    def get_limits(self, plan: Union[PlanType, str, None]) -> PlanLimits:
        """Get limits for a plan, using FREE limits for unknown tiers."""
        return self.plans[resolve_plan(plan)]


DEFAULT_CONFIG = TrackerConfig()

_TRACKER_KEYS = {
    'redis_url', 'history_limit', 'warning_threshold', 'failure_policy',
    'daily_ttl_days', 'monthly_ttl_days', 'stats_ttl_days'
}
_INT_TRACKER_KEYS = {'history_limit', 'daily_ttl_days', 'monthly_ttl_days', 'stats_ttl_days'}


def load_tracker_config(path: str) -> TrackerConfig:
    """Load and validate tracker configuration from YAML file.

    Strict validation ensures no silent misconfigurations that could
    hand out more quota than a plan allows.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated TrackerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Tracker config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'plans', 'tracker'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    plans = dict(DEFAULT_PLAN_LIMITS)
    plans_data = raw_config.get('plans') or {}
    if not isinstance(plans_data, dict):
        raise ValueError("'plans' must be a dictionary")

    for plan_name, plan_data in plans_data.items():
        plan = _parse_plan_name(plan_name)
        plans[plan] = _parse_plan_limits(plan_data, f"plans.{plan_name}")

    tracker_data = raw_config.get('tracker') or {}
    if not isinstance(tracker_data, dict):
        raise ValueError("'tracker' must be a dictionary")

    return TrackerConfig(plans=plans, **_parse_tracker_settings(tracker_data))


def _parse_plan_name(name: Any) -> PlanType:
    if not isinstance(name, str):
        raise ValueError(f"Plan name must be a string, got {name!r}")
    try:
        return PlanType(name.upper())
    except ValueError:
        valid_plans = [plan.value for plan in PlanType]
        raise ValueError(f"Unknown plan '{name}', must be one of: {valid_plans}")


def _parse_plan_limits(data: Any, path: str) -> PlanLimits:
    """Parse and validate a plan's limits.

    Args:
        data: Plan configuration data
        path: Path for error messages

    Returns:
        Validated PlanLimits

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    allowed_keys = {'daily', 'monthly'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    limits = {}
    for key in ('daily', 'monthly'):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"'{key}' in {path} must be a positive integer")
        limits[key] = value

    if limits['daily'] > limits['monthly']:
        raise ValueError(f"'daily' in {path} cannot exceed 'monthly'")

    return PlanLimits(daily=limits['daily'], monthly=limits['monthly'])


def _parse_tracker_settings(data: Dict[str, Any]) -> Dict[str, Any]:
    """Parse and validate the tracker section into TrackerConfig keyword arguments."""
    unknown_keys = set(data.keys()) - _TRACKER_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in tracker: {unknown_keys}")

    settings: Dict[str, Any] = {}

    for key in _INT_TRACKER_KEYS & set(data):
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"'tracker.{key}' must be a positive integer")
        settings[key] = value

    if 'warning_threshold' in data:
        value = data['warning_threshold']
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 < value <= 1:
            raise ValueError("'tracker.warning_threshold' must be a number in (0, 1]")
        settings['warning_threshold'] = float(value)

    if 'failure_policy' in data:
        value = data['failure_policy']
        if not isinstance(value, str):
            raise ValueError("'tracker.failure_policy' must be a string")
        try:
            settings['failure_policy'] = FailurePolicy(value.lower())
        except ValueError:
            valid_policies = [policy.value for policy in FailurePolicy]
            raise ValueError(f"'tracker.failure_policy' must be one of: {valid_policies}")

    if 'redis_url' in data and data['redis_url'] is not None:
        if not isinstance(data['redis_url'], str):
            raise ValueError("'tracker.redis_url' must be a string")
        settings['redis_url'] = data['redis_url']

    return settings
