"""Unit tests for tool policy resolution."""

import json
import pytest

from workspace.policy import DEFAULT_TOOL_CONFIG, ToolPolicy, ToolPolicyResolver
from utils.errors import ConfigurationError


# ============================================================================
# ToolPolicy Tests
# ============================================================================

def test_policy_defaults_unset():
    """Test an empty policy leaves every field unset."""
    policy = ToolPolicy()

    assert policy.enabled is None
    assert policy.is_enabled() is True
    assert policy.is_enabled(default=False) is False
    assert policy.approval_required is False
    assert policy.read_before_write is False


def test_merged_with_overrides_only_set_fields():
    """Test merging keeps base fields the override leaves unset."""
    base = ToolPolicy(enabled=True, needs_approval=True)
    override = ToolPolicy(require_read_before_write=True)

    merged = base.merged_with(override)

    assert merged == ToolPolicy(enabled=True, needs_approval=True, require_read_before_write=True)


def test_merged_with_false_wins():
    """Test an explicit False in the override replaces True."""
    merged = ToolPolicy(needs_approval=True).merged_with(ToolPolicy(needs_approval=False))
    assert merged.needs_approval is False


# ============================================================================
# Default Configuration Tests
# ============================================================================

def test_default_filesystem_policies():
    """Test shipped defaults for filesystem tools."""
    resolver = ToolPolicyResolver.default()

    write = resolver.policy_for("filesystem", "write_file")
    assert write.approval_required is True
    assert write.read_before_write is False

    edit = resolver.policy_for("filesystem", "edit_file")
    assert edit.approval_required is True
    assert edit.read_before_write is True

    delete = resolver.policy_for("filesystem", "delete_file")
    assert delete.approval_required is True
    assert delete.read_before_write is True

    read = resolver.policy_for("filesystem", "read_file")
    assert read.approval_required is False
    assert read.is_enabled() is True


def test_default_sandbox_needs_approval():
    """Test command execution needs approval by default."""
    resolver = ToolPolicyResolver.default()
    assert resolver.policy_for("sandbox", "execute_command").approval_required is True


def test_unconfigured_toolkit_resolves_empty_policy():
    """Test toolkits without configuration get an all-unset policy."""
    resolver = ToolPolicyResolver.default()
    assert resolver.policy_for("search", "workspace_search") == ToolPolicy()


def test_default_config_is_not_mutated():
    """Test building resolvers does not alter the shared default mapping."""
    before = json.dumps(DEFAULT_TOOL_CONFIG, sort_keys=True)
    ToolPolicyResolver.default()
    assert json.dumps(DEFAULT_TOOL_CONFIG, sort_keys=True) == before


# ============================================================================
# from_dict / from_file Tests
# ============================================================================

def test_from_dict_tool_override_beats_defaults():
    """Test per-tool entries win over toolkit defaults field by field."""
    resolver = ToolPolicyResolver.from_dict({
        "filesystem": {
            "defaults": {"needs_approval": True, "enabled": True},
            "tools": {"ls": {"needs_approval": False}},
        }
    })

    ls = resolver.policy_for("filesystem", "ls")
    assert ls.needs_approval is False
    assert ls.enabled is True

    assert resolver.policy_for("filesystem", "stat").needs_approval is True


def test_from_dict_camel_case_aliases():
    """Test camelCase field names are accepted."""
    resolver = ToolPolicyResolver.from_dict({
        "filesystem": {"tools": {"write_file": {"needsApproval": False, "requireReadBeforeWrite": True}}}
    })

    policy = resolver.policy_for("filesystem", "write_file")
    assert policy.needs_approval is False
    assert policy.require_read_before_write is True


def test_from_dict_disabled_tool():
    """Test disabling a tool."""
    resolver = ToolPolicyResolver.from_dict({"search": {"tools": {"workspace_index": {"enabled": False}}}})

    assert resolver.policy_for("search", "workspace_index").is_enabled() is False
    assert resolver.policy_for("search", "workspace_search").is_enabled() is True


def test_from_dict_unknown_toolkit():
    """Test unknown toolkits are rejected."""
    with pytest.raises(ConfigurationError, match="Unknown toolkit 'network'"):
        ToolPolicyResolver.from_dict({"network": {}})


def test_from_dict_unknown_field():
    """Test unknown policy fields are rejected."""
    with pytest.raises(ConfigurationError, match="Unknown policy field 'timeout'"):
        ToolPolicyResolver.from_dict({"filesystem": {"defaults": {"timeout": 5}}})


def test_from_dict_non_boolean_value():
    """Test policy values must be booleans."""
    with pytest.raises(ConfigurationError, match="must be a boolean"):
        ToolPolicyResolver.from_dict({"filesystem": {"tools": {"ls": {"enabled": "yes"}}}})


def test_from_file(tmp_path):
    """Test loading policies from a JSON file."""
    path = tmp_path / "tools.json"
    path.write_text(json.dumps({"sandbox": {"defaults": {"enabled": False}}}))

    resolver = ToolPolicyResolver.from_file(path)

    assert resolver.policy_for("sandbox", "execute_command").is_enabled() is False


def test_from_file_invalid_json(tmp_path):
    """Test malformed policy files raise ConfigurationError."""
    path = tmp_path / "tools.json"
    path.write_text("{not json")

    with pytest.raises(ConfigurationError, match="Cannot load tool policy file"):
        ToolPolicyResolver.from_file(path)
