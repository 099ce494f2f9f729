"""Per-toolkit / per-tool policy resolution."""

import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from utils.errors import ConfigurationError


logger = logging.getLogger("workspace-runtime.policy")


TOOLKITS = ("filesystem", "sandbox", "search", "skills")

_FIELD_ALIASES = {
    "enabled": "enabled",
    "needs_approval": "needs_approval",
    "needsApproval": "needs_approval",
    "require_read_before_write": "require_read_before_write",
    "requireReadBeforeWrite": "require_read_before_write",
}


@dataclass(frozen=True)
class ToolPolicy:
    """Tool policy; None means "unset" so overrides can be merged per field."""
    enabled: Optional[bool] = None
    needs_approval: Optional[bool] = None
    require_read_before_write: Optional[bool] = None

    def merged_with(self, override: "ToolPolicy") -> "ToolPolicy":
        """Overlay every field that is set on ``override``."""
        changes = {
            f.name: getattr(override, f.name)
            for f in fields(override)
            if getattr(override, f.name) is not None
        }
        return replace(self, **changes)

    def is_enabled(self, default: bool = True) -> bool:
        return default if self.enabled is None else self.enabled

    @property
    def approval_required(self) -> bool:
        return bool(self.needs_approval)

    @property
    def read_before_write(self) -> bool:
        return bool(self.require_read_before_write)

    def to_dict(self) -> Dict[str, Optional[bool]]:
        return {
            "enabled": self.enabled,
            "needs_approval": self.needs_approval,
            "require_read_before_write": self.require_read_before_write,
        }


@dataclass(frozen=True)
class ToolkitPolicies:
    """Toolkit defaults plus per-tool overrides."""
    defaults: ToolPolicy = ToolPolicy()
    tools: Optional[Mapping[str, ToolPolicy]] = None

    def override_for(self, tool_name: str) -> ToolPolicy:
        if not self.tools:
            return ToolPolicy()
        return self.tools.get(tool_name, ToolPolicy())


DEFAULT_TOOL_CONFIG: Dict[str, Dict[str, Any]] = {
    "filesystem": {
        "defaults": {"needs_approval": False},
        "tools": {
            "delete_file": {"needs_approval": True, "require_read_before_write": True},
            "write_file": {"needs_approval": True},
            "edit_file": {"needs_approval": True, "require_read_before_write": True},
        },
    },
    "sandbox": {
        "defaults": {"needs_approval": True},
    },
}


def _parse_policy(raw: Mapping[str, Any], where: str) -> ToolPolicy:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Policy at {where} must be an object")

    values: Dict[str, bool] = {}
    for key, value in raw.items():
        field_name = _FIELD_ALIASES.get(key)
        if field_name is None:
            raise ConfigurationError(f"Unknown policy field '{key}' at {where}")
        if not isinstance(value, bool):
            raise ConfigurationError(f"Policy field '{key}' at {where} must be a boolean")
        values[field_name] = value
    return ToolPolicy(**values)


class ToolPolicyResolver:
    """Resolves effective tool policies from static configuration."""

    def __init__(self, toolkits: Optional[Mapping[str, ToolkitPolicies]] = None):
        self._toolkits: Dict[str, ToolkitPolicies] = dict(toolkits or {})

    @classmethod
    def from_dict(cls, config: Optional[Mapping[str, Any]]) -> "ToolPolicyResolver":
        """
        Build a resolver from JSON-shaped configuration.

        Args:
            config: {toolkit: {"defaults": {...}, "tools": {name: {...}}}}

        Returns:
            ToolPolicyResolver

        Raises:
            ConfigurationError: Unknown toolkit, field, or non-boolean value
        """
        toolkits: Dict[str, ToolkitPolicies] = {}
        for toolkit, raw in (config or {}).items():
            if toolkit not in TOOLKITS:
                raise ConfigurationError(
                    f"Unknown toolkit '{toolkit}'. Must be one of: {', '.join(TOOLKITS)}"
                )
            raw = raw or {}
            defaults = _parse_policy(raw.get("defaults", {}), f"{toolkit}.defaults")
            tools = {
                name: _parse_policy(policy, f"{toolkit}.tools.{name}")
                for name, policy in (raw.get("tools") or {}).items()
            }
            toolkits[toolkit] = ToolkitPolicies(defaults=defaults, tools=tools)
        return cls(toolkits)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ToolPolicyResolver":
        """Load policies from a JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as handle:
                config = json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot load tool policy file {path}: {e}") from e

        logger.info(f"Loaded tool policies from {path}")
        return cls.from_dict(config)

    @classmethod
    def default(cls) -> "ToolPolicyResolver":
        return cls.from_dict(DEFAULT_TOOL_CONFIG)

    def policy_for(self, toolkit: str, tool_name: str) -> ToolPolicy:
        """
        Resolve the effective policy for a tool.

        The per-tool entry wins field by field over the toolkit defaults.
        """
        toolkit_policies = self._toolkits.get(toolkit)
        if toolkit_policies is None:
            return ToolPolicy()
        return toolkit_policies.defaults.merged_with(
            toolkit_policies.override_for(tool_name)
        )
