"""
Tests for configuration profiles

Tests config_loader.py: profile loading, inheritance, flattening,
env var overrides, CLI overrides, the full merge chain and validation.
"""

import os
import sys
from argparse import Namespace
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "scripts"))

import config_loader
from config_loader import (
    ANALYZER_NAMES,
    build_unified_config,
    deep_merge,
    extract_cli_overrides,
    flatten_profile,
    get_default_config,
    list_available_profiles,
    load_env_overrides,
    load_profile,
    validate_config,
)


# ============================================================================
# Test get_default_config
# ============================================================================


class TestGetDefaultConfig:
    def test_all_keys_present(self):
        config = get_default_config()
        required_keys = [
            "use_validator", "validator_source", "deadline_ms", "analyzer_timeout",
            "max_code_size", "validator_max_code_size", "similarity_threshold",
            "min_substring_length", "narrative_max_chars", "retry_max_attempts",
        ] + [f"enable_{name}" for name in ANALYZER_NAMES]
        for key in required_keys:
            assert key in config, f"Missing key: {key}"

    def test_sensible_defaults(self):
        config = get_default_config()
        assert config["enable_openai"] is True
        assert config["enable_slither"] is False
        assert config["deadline_ms"] == 90000
        assert config["analyzer_timeout"] == 45
        assert config["similarity_threshold"] == 0.85

    def test_returns_fresh_copy(self):
        config = get_default_config()
        config["deadline_ms"] = 1
        assert get_default_config()["deadline_ms"] == 90000


# ============================================================================
# Test flatten_profile
# ============================================================================


class TestFlattenProfile:
    def test_analyzers_section(self):
        flat = flatten_profile({"analyzers": {"openai": True, "slither": False}})
        assert flat["enable_openai"] is True
        assert flat["enable_slither"] is False

    def test_models_and_endpoints(self):
        flat = flatten_profile({"models": {"ollama": "qwen2.5"}, "endpoints": {"ollama": "http://box:11434"}})
        assert flat["ollama_model"] == "qwen2.5"
        assert flat["ollama_endpoint"] == "http://box:11434"

    def test_validator_section(self):
        flat = flatten_profile({"validator": {"enabled": False, "source": "anthropic", "max_code_size": 1000}})
        assert flat["use_validator"] is False
        assert flat["validator_source"] == "anthropic"
        assert flat["validator_max_code_size"] == 1000

    def test_limits_and_matching(self):
        flat = flatten_profile({"limits": {"deadline_ms": 5000}, "matching": {"similarity_threshold": 0.9}})
        assert flat["deadline_ms"] == 5000
        assert flat["similarity_threshold"] == 0.9

    def test_none_values_excluded(self):
        flat = flatten_profile({"analyzers": {"openai": True, "anthropic": None}})
        assert "enable_openai" in flat
        assert "enable_anthropic" not in flat


# ============================================================================
# Test load_profile
# ============================================================================


class TestLoadProfile:
    def test_load_standard_profile(self):
        profile = load_profile("standard")
        assert profile["enable_openai"] is True
        assert profile["use_validator"] is True
        assert profile["validator_source"] == "openai"

    def test_fast_inherits_standard(self):
        profile = load_profile("fast")
        assert profile["enable_openai"] is True
        assert profile["enable_deepseek"] is False
        assert profile["use_validator"] is False
        assert profile["deadline_ms"] == 30000
        # inherited, not overridden
        assert profile["similarity_threshold"] == 0.85

    def test_offline_profile(self):
        profile = load_profile("offline")
        assert profile["enable_openai"] is False
        assert profile["enable_ollama"] is True
        assert profile["enable_slither"] is True
        assert profile["validator_source"] == "ollama"

    def test_nonexistent_profile(self):
        with pytest.raises(FileNotFoundError):
            load_profile("nonexistent_profile_xyz")

    def test_circular_inheritance(self, tmp_path):
        (tmp_path / "a.yml").write_text("_extends: b\n")
        (tmp_path / "b.yml").write_text("_extends: a\n")
        with patch.object(config_loader, "_profile_search_paths", lambda name: [tmp_path / f"{name}.yml"]):
            with pytest.raises(ValueError, match="Circular"):
                load_profile("a")

    def test_all_profiles_loadable(self):
        profiles = list_available_profiles()
        assert {"standard", "fast", "offline"} <= set(profiles)
        for name in profiles:
            assert isinstance(load_profile(name), dict)


# ============================================================================
# Test load_env_overrides
# ============================================================================


class TestLoadEnvOverrides:
    def test_typed_values(self):
        env = {"AUDIT_DEADLINE_MS": "5000", "ENABLE_SLITHER": "yes", "SIMILARITY_THRESHOLD": "0.9"}
        with patch.dict(os.environ, env, clear=True):
            overrides = load_env_overrides()
        assert overrides == {"deadline_ms": 5000, "enable_slither": True, "similarity_threshold": 0.9}

    def test_alias_first_match_wins(self):
        with patch.dict(os.environ, {"HUGGINGFACE_API_KEY": "hf_a", "HF_TOKEN": "hf_b"}, clear=True):
            assert load_env_overrides()["huggingface_api_key"] == "hf_a"

    def test_invalid_value_ignored(self):
        with patch.dict(os.environ, {"MAX_CODE_SIZE": "lots"}, clear=True):
            assert "max_code_size" not in load_env_overrides()


# ============================================================================
# Test CLI overrides and merge chain
# ============================================================================


class TestCliOverrides:
    def test_none_values_skipped(self):
        args = Namespace(deadline_ms=None, use_validator=False, enable_openai=None)
        assert extract_cli_overrides(args) == {"use_validator": False}

    def test_pattern_only_disables_every_analyzer(self):
        overrides = extract_cli_overrides(Namespace(pattern_only=True))
        assert all(overrides[f"enable_{name}"] is False for name in ANALYZER_NAMES)

    def test_no_args(self):
        assert extract_cli_overrides(None) == {}


class TestBuildUnifiedConfig:
    def test_deep_merge_skips_none(self):
        assert deep_merge({"a": 1, "b": 2}, {"a": None, "b": 3}) == {"a": 1, "b": 3}

    def test_precedence_profile_env_cli(self, tmp_path):
        env = {"AUDIT_DEADLINE_MS": "20000", "ANALYZER_TIMEOUT": "10"}
        args = Namespace(analyzer_timeout=5.0)
        with patch.dict(os.environ, env, clear=True):
            config = build_unified_config(profile="fast", cli_args=args, repo_path=str(tmp_path))
        assert config["use_validator"] is False  # profile
        assert config["deadline_ms"] == 20000  # env beats profile
        assert config["analyzer_timeout"] == 5.0  # cli beats env

    def test_project_file_applied(self, tmp_path):
        (tmp_path / ".consensus-audit.yml").write_text("matching:\n  similarity_threshold: 0.7\n")
        with patch.dict(os.environ, {}, clear=True):
            config = build_unified_config(repo_path=str(tmp_path))
        assert config["similarity_threshold"] == 0.7

    def test_missing_profile_is_skipped(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            config = build_unified_config(profile="nope_xyz", repo_path=str(tmp_path))
        assert config == get_default_config()


# ============================================================================
# Test validate_config
# ============================================================================


class TestValidateConfig:
    def test_defaults_with_keys_are_clean(self):
        config = get_default_config()
        config.update({"openai_api_key": "sk-test", "huggingface_api_key": "hf_test"})
        assert validate_config(config) == []

    def test_missing_key_warns(self):
        issues = validate_config(get_default_config())
        assert any("OPENAI_API_KEY" in issue for issue in issues)
        assert all(issue.startswith("WARNING") for issue in issues)

    def test_invalid_validator_source(self):
        config = get_default_config()
        config["validator_source"] = "slither"
        assert any(issue.startswith("ERROR") and "validator_source" in issue for issue in validate_config(config))

    def test_no_analyzers_warns(self):
        config = {f"enable_{name}": False for name in ANALYZER_NAMES}
        assert any("no analyzers are enabled" in issue for issue in validate_config(config))

    def test_bad_threshold(self):
        config = get_default_config()
        config["similarity_threshold"] = 1.5
        assert "ERROR: similarity_threshold must be in (0.0, 1.0]." in validate_config(config)

    def test_timeout_exceeding_deadline_warns(self):
        config = get_default_config()
        config.update({"deadline_ms": 1000, "analyzer_timeout": 45})
        assert any("exceeds deadline_ms" in issue for issue in validate_config(config))
