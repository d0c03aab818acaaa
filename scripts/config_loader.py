"""
Configuration Loader for the consensus audit engine.

Implements a layered configuration system:
    hardcoded defaults < profile YAML < .consensus-audit.yml < env vars < CLI args

Usage:
    from config_loader import build_unified_config
    config = build_unified_config(profile="standard", cli_args=args)
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".consensus-audit"
PROJECT_FILE_NAME = ".consensus-audit.yml"
PROFILE_ENV_VAR = "CONSENSUS_AUDIT_PROFILE"

ANALYZER_NAMES = ("openai", "anthropic", "deepseek", "mistral", "ollama", "slither", "mythril")
LLM_ANALYZER_NAMES = ("openai", "anthropic", "deepseek", "mistral", "ollama")

# ---------------------------------------------------------------------------
# Project root detection
# ---------------------------------------------------------------------------

def _find_project_root() -> Path:
    """Find the project root by looking for known markers."""
    current = Path(__file__).resolve().parent
    for ancestor in [current, *current.parents]:
        if (ancestor / "profiles").is_dir() and (ancestor / "scripts").is_dir():
            return ancestor
        if (ancestor / "pyproject.toml").is_file():
            return ancestor
    return current.parent


PROJECT_ROOT = _find_project_root()

# ---------------------------------------------------------------------------
# Default configuration
# ---------------------------------------------------------------------------

def get_default_config() -> Dict[str, Any]:
    """Return all configuration parameters with sensible defaults.

    This is the lowest-priority layer.  Every configurable key must appear
    here so that downstream code never needs to guard against missing keys.
    """
    return {
        # -- Credentials / endpoints --
        "openai_api_key": "",
        "anthropic_api_key": "",
        "huggingface_api_key": "",
        "deepseek_endpoint": "https://router.huggingface.co/v1",
        "mistral_endpoint": "https://router.huggingface.co/v1",
        "ollama_endpoint": "http://localhost:11434",

        # -- Analyzer toggles (order here is the configuration order) --
        "enable_openai": True,
        "enable_anthropic": False,
        "enable_deepseek": True,
        "enable_mistral": True,
        "enable_ollama": False,
        "enable_slither": False,
        "enable_mythril": False,

        # -- Models --
        "openai_model": "gpt-4-turbo",
        "openai_fallback_model": "gpt-3.5-turbo",
        "anthropic_model": "claude-sonnet-4-5-20250929",
        "deepseek_model": "deepseek-ai/deepseek-coder-33b-instruct",
        "mistral_model": "mistralai/Mistral-7B-Instruct-v0.2",
        "ollama_model": "llama3.2:3b",
        "temperature": 0.1,
        "max_tokens": 4000,

        # -- Validator --
        "use_validator": True,
        "validator_source": "openai",
        "validator_temperature": 0.2,
        "validator_max_code_size": 25000,

        # -- Limits --
        "deadline_ms": 90000,
        "analyzer_timeout": 45,
        "tool_timeout": 120,
        "mythril_execution_timeout": 60,
        "max_code_size": 512000,
        "retry_max_attempts": 2,
        "narrative_max_chars": 500,

        # -- Finding matching --
        "similarity_threshold": 0.85,
        "min_substring_length": 10,

        # -- Output --
        "log_level": "INFO",
        "output_format": "text",
    }

# ---------------------------------------------------------------------------
# Profile loading
# ---------------------------------------------------------------------------

def _profile_search_paths(profile_name: str) -> List[Path]:
    """Return candidate YAML paths for *profile_name*, in priority order."""
    return [
        PROJECT_ROOT / "profiles" / f"{profile_name}.yml",                 # built-in
        Path.home() / CONFIG_DIR_NAME / "profiles" / f"{profile_name}.yml",  # user
        Path(CONFIG_DIR_NAME) / "profiles" / f"{profile_name}.yml",          # project-local
    ]


def _load_raw_profile(profile_name: str, _chain: Optional[List[str]] = None) -> dict:
    """Load raw YAML dict for *profile_name*, resolving ``_extends``.

    Parameters
    ----------
    profile_name:
        Name of the profile to load (without ``.yml`` extension).
    _chain:
        Internal recursion guard tracking the inheritance chain.

    Returns
    -------
    dict
        The merged (nested) profile dict with parent values as base.

    Raises
    ------
    FileNotFoundError
        If the profile YAML cannot be found in any search path.
    ValueError
        If a circular ``_extends`` chain is detected.
    """
    if _chain is None:
        _chain = []

    if profile_name in _chain:
        raise ValueError(
            f"Circular profile inheritance detected: "
            f"{' -> '.join(_chain)} -> {profile_name}"
        )
    _chain.append(profile_name)

    loaded_path: Optional[Path] = None
    for candidate in _profile_search_paths(profile_name):
        if candidate.is_file():
            loaded_path = candidate
            break

    if loaded_path is None:
        raise FileNotFoundError(
            f"Profile '{profile_name}' not found.  Searched: "
            + ", ".join(str(p) for p in _profile_search_paths(profile_name))
        )

    logger.info("Loading profile '%s' from %s", profile_name, loaded_path)
    with open(loaded_path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    parent_name = raw.pop("_extends", None)
    if parent_name:
        parent = _load_raw_profile(parent_name, _chain=_chain)
        raw = _deep_merge_nested(parent, raw)

    return raw


def _deep_merge_nested(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (nested dicts)."""
    merged = dict(base)
    for key, value in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(value, dict)
        ):
            merged[key] = _deep_merge_nested(merged[key], value)
        else:
            merged[key] = value
    return merged

# ---------------------------------------------------------------------------
# Flatten nested YAML -> flat config dict
# ---------------------------------------------------------------------------

_VALIDATOR_KEY_MAP = {
    "enabled": "use_validator",
    "source": "validator_source",
    "temperature": "validator_temperature",
    "max_code_size": "validator_max_code_size",
}


def flatten_profile(nested: dict) -> Dict[str, Any]:
    """Convert a nested profile YAML dict to a flat config dict.

    Mapping rules:
    - ``nested["analyzers"][name]``  -> ``enable_{name}``
    - ``nested["models"][name]``     -> ``{name}_model``
    - ``nested["endpoints"][name]``  -> ``{name}_endpoint``
    - ``nested["validator"][key]``   -> ``use_validator`` / ``validator_{key}``
    - ``nested["limits"][key]``      -> key (directly)
    - ``nested["matching"][key]``    -> key (directly)
    - ``nested["output"][key]``      -> key (directly)
    - Top-level scalar keys (``name``, ``description``, ``temperature``,
      ``max_tokens``, ``log_level``) are passed through as-is.

    Only non-None values are included.
    """
    flat: Dict[str, Any] = {}

    for section, template in (("analyzers", "enable_{}"), ("models", "{}_model"), ("endpoints", "{}_endpoint")):
        block = nested.get(section)
        if isinstance(block, dict):
            for key, value in block.items():
                if value is not None:
                    flat[template.format(key)] = value

    validator = nested.get("validator")
    if isinstance(validator, dict):
        for key, value in validator.items():
            if value is not None:
                flat[_VALIDATOR_KEY_MAP.get(key, f"validator_{key}")] = value

    for section in ("limits", "matching", "output"):
        block = nested.get(section)
        if isinstance(block, dict):
            for key, value in block.items():
                if value is not None:
                    flat[key] = value

    for scalar_key in ("name", "description", "temperature", "max_tokens", "log_level"):
        if nested.get(scalar_key) is not None:
            flat[scalar_key] = nested[scalar_key]

    return flat


def load_profile(profile_name: str) -> Dict[str, Any]:
    """Load a profile by name and return a flat config dict.

    Search order (first match wins per path):
      1. ``{PROJECT_ROOT}/profiles/{name}.yml``             (built-in)
      2. ``~/.consensus-audit/profiles/{name}.yml``          (user)
      3. ``.consensus-audit/profiles/{name}.yml``            (project-local)

    The ``_extends`` key enables profile inheritance.
    """
    raw = _load_raw_profile(profile_name)
    return flatten_profile(raw)

# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------

# Mapping: (env_var_name, ...) -> (config_key, type)
_ENV_MAPPINGS: List[tuple] = [
    # Credentials / endpoints
    (("OPENAI_API_KEY",),                           "openai_api_key",       "str"),
    (("ANTHROPIC_API_KEY",),                        "anthropic_api_key",    "str"),
    (("HUGGINGFACE_API_KEY", "HF_TOKEN"),           "huggingface_api_key",  "str"),
    (("DEEPSEEK_ENDPOINT",),                        "deepseek_endpoint",    "str"),
    (("MISTRAL_ENDPOINT",),                         "mistral_endpoint",     "str"),
    (("OLLAMA_ENDPOINT",),                          "ollama_endpoint",      "str"),

    # Analyzer toggles
    (("ENABLE_OPENAI",),                            "enable_openai",        "bool"),
    (("ENABLE_ANTHROPIC",),                         "enable_anthropic",     "bool"),
    (("ENABLE_DEEPSEEK",),                          "enable_deepseek",      "bool"),
    (("ENABLE_MISTRAL",),                           "enable_mistral",       "bool"),
    (("ENABLE_OLLAMA",),                            "enable_ollama",        "bool"),
    (("ENABLE_SLITHER",),                           "enable_slither",       "bool"),
    (("ENABLE_MYTHRIL",),                           "enable_mythril",       "bool"),

    # Models
    (("OPENAI_MODEL",),                             "openai_model",         "str"),
    (("OPENAI_FALLBACK_MODEL",),                    "openai_fallback_model", "str"),
    (("ANTHROPIC_MODEL",),                          "anthropic_model",      "str"),
    (("DEEPSEEK_MODEL",),                           "deepseek_model",       "str"),
    (("MISTRAL_MODEL",),                            "mistral_model",        "str"),
    (("OLLAMA_MODEL",),                             "ollama_model",         "str"),
    (("AI_TEMPERATURE",),                           "temperature",          "float"),
    (("MAX_TOKENS",),                               "max_tokens",           "int"),

    # Validator
    (("USE_VALIDATOR",),                            "use_validator",        "bool"),
    (("VALIDATOR_SOURCE",),                         "validator_source",     "str"),

    # Limits
    (("AUDIT_DEADLINE_MS",),                        "deadline_ms",          "int"),
    (("ANALYZER_TIMEOUT", "API_TIMEOUT"),           "analyzer_timeout",     "float"),
    (("TOOL_TIMEOUT",),                             "tool_timeout",         "float"),
    (("MAX_CODE_SIZE",),                            "max_code_size",        "int"),
    (("RETRY_MAX_ATTEMPTS",),                       "retry_max_attempts",   "int"),

    # Matching
    (("SIMILARITY_THRESHOLD",),                     "similarity_threshold", "float"),

    # Output
    (("LOG_LEVEL",),                                "log_level",            "str"),
]


def _coerce(raw: str, type_tag: str) -> Any:
    """Convert a raw env-var string to the appropriate Python type."""
    if type_tag == "bool":
        return raw.lower() in ("true", "1", "yes")
    if type_tag == "int":
        return int(raw)
    if type_tag == "float":
        return float(raw)
    return raw


def load_env_overrides() -> Dict[str, Any]:
    """Load configuration values from explicitly-set environment variables.

    Only variables that are **present** in ``os.environ`` are returned, so
    defaults or profile values are not accidentally overwritten. The first
    name found in a mapping tuple wins.
    """
    overrides: Dict[str, Any] = {}

    for env_names, config_key, type_tag in _ENV_MAPPINGS:
        for env_name in env_names:
            if env_name in os.environ:
                try:
                    overrides[config_key] = _coerce(os.environ[env_name], type_tag)
                except (ValueError, TypeError) as exc:
                    logger.warning(
                        "Ignoring env var %s: could not convert to %s (%s)",
                        env_name, type_tag, exc,
                    )
                break  # first match wins

    return overrides

# ---------------------------------------------------------------------------
# CLI argument extraction
# ---------------------------------------------------------------------------

# Mapping: argparse attribute -> config key
_CLI_ATTR_MAP: Dict[str, str] = {
    "profile": "_profile",  # handled separately in build_unified_config
    "use_validator": "use_validator",
    "validator_source": "validator_source",
    "deadline_ms": "deadline_ms",
    "analyzer_timeout": "analyzer_timeout",
    "max_code_size": "max_code_size",
    "similarity_threshold": "similarity_threshold",
    "log_level": "log_level",
    "output_format": "output_format",
    "enable_openai": "enable_openai",
    "enable_anthropic": "enable_anthropic",
    "enable_deepseek": "enable_deepseek",
    "enable_mistral": "enable_mistral",
    "enable_ollama": "enable_ollama",
    "enable_slither": "enable_slither",
    "enable_mythril": "enable_mythril",
}


def extract_cli_overrides(args: Any) -> Dict[str, Any]:
    """Extract explicitly-set CLI arguments into a flat config dict.

    Only attributes whose value is not ``None`` are included, so that
    argparse defaults do not shadow earlier layers.
    """
    if args is None:
        return {}

    overrides: Dict[str, Any] = {}
    for attr, config_key in _CLI_ATTR_MAP.items():
        value = getattr(args, attr, None)
        if value is not None:
            overrides[config_key] = value

    # --pattern-only disables every analyzer
    if getattr(args, "pattern_only", False):
        for name in ANALYZER_NAMES:
            overrides[f"enable_{name}"] = False

    return overrides

# ---------------------------------------------------------------------------
# Merge helpers
# ---------------------------------------------------------------------------

def deep_merge(base: dict, override: dict) -> dict:
    """Merge *override* into *base*.  Only non-None override values win."""
    merged = dict(base)
    for key, value in override.items():
        if value is not None:
            merged[key] = value
    return merged

# ---------------------------------------------------------------------------
# .consensus-audit.yml loader
# ---------------------------------------------------------------------------

def _load_project_yml(repo_path: str) -> Dict[str, Any]:
    """Load ``.consensus-audit.yml`` from *repo_path* as a flat config dict."""
    yml_path = Path(repo_path) / PROJECT_FILE_NAME
    if not yml_path.is_file():
        return {}

    logger.info("Loading %s from %s", PROJECT_FILE_NAME, yml_path)
    with open(yml_path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    return flatten_profile(raw)

# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def build_unified_config(
    profile: Optional[str] = None,
    cli_args: Any = None,
    repo_path: str = ".",
) -> Dict[str, Any]:
    """Build a fully-merged configuration dict.

    Layer precedence (last wins):
        1. Hard-coded defaults          (``get_default_config()``)
        2. Profile YAML                 (``load_profile()``)
        3. ``.consensus-audit.yml``     (project-level overrides)
        4. Environment variables        (``load_env_overrides()``)
        5. CLI arguments                (``extract_cli_overrides()``)

    Parameters
    ----------
    profile:
        Explicit profile name.  If ``None``, the function checks
        ``cli_args.profile``, then the ``CONSENSUS_AUDIT_PROFILE`` env var.
    cli_args:
        An ``argparse.Namespace`` (or ``None``).
    repo_path:
        Directory searched for ``.consensus-audit.yml``.

    Returns
    -------
    dict
        The fully-resolved, flat configuration dict.
    """
    config = get_default_config()

    profile_name = profile
    if profile_name is None and cli_args is not None:
        profile_name = getattr(cli_args, "profile", None)
    if profile_name is None:
        profile_name = os.environ.get(PROFILE_ENV_VAR)

    if profile_name:
        try:
            config = deep_merge(config, load_profile(profile_name))
            logger.info("Applied profile '%s'", profile_name)
        except FileNotFoundError:
            logger.warning("Profile '%s' not found; skipping", profile_name)

    project_yml = _load_project_yml(repo_path)
    if project_yml:
        config = deep_merge(config, project_yml)
        logger.info("Applied %s overrides (%d keys)", PROJECT_FILE_NAME, len(project_yml))

    env_overrides = load_env_overrides()
    if env_overrides:
        config = deep_merge(config, env_overrides)
        logger.debug("Applied %d env-var overrides", len(env_overrides))

    cli_overrides = extract_cli_overrides(cli_args)
    cli_overrides.pop("_profile", None)
    if cli_overrides:
        config = deep_merge(config, cli_overrides)
        logger.debug("Applied %d CLI overrides", len(cli_overrides))

    return config

# ---------------------------------------------------------------------------
# Profile discovery
# ---------------------------------------------------------------------------

def list_available_profiles() -> List[str]:
    """Return the names of all available profiles."""
    names: set = set()

    search_dirs = [
        PROJECT_ROOT / "profiles",
        Path.home() / CONFIG_DIR_NAME / "profiles",
        Path(CONFIG_DIR_NAME) / "profiles",
    ]
    for directory in search_dirs:
        if directory.is_dir():
            for yml_file in directory.glob("*.yml"):
                names.add(yml_file.stem)

    return sorted(names)

# ---------------------------------------------------------------------------
# Configuration validation
# ---------------------------------------------------------------------------

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_OUTPUT_FORMATS = {"text", "json"}


def validate_config(config: Dict[str, Any]) -> List[str]:
    """Validate a configuration dict and return a list of warnings/errors.

    Returns
    -------
    list[str]
        Human-readable warning/error messages.  An empty list means the
        config is valid.
    """
    issues: List[str] = []

    # -- Credentials per enabled analyzer --
    if config.get("enable_openai") and not config.get("openai_api_key"):
        issues.append("WARNING: enable_openai is true but OPENAI_API_KEY is not set; openai will be skipped.")
    if config.get("enable_anthropic") and not config.get("anthropic_api_key"):
        issues.append("WARNING: enable_anthropic is true but ANTHROPIC_API_KEY is not set; anthropic will be skipped.")
    for name in ("deepseek", "mistral"):
        if config.get(f"enable_{name}") and not config.get("huggingface_api_key"):
            issues.append(
                f"WARNING: enable_{name} is true but HUGGINGFACE_API_KEY is not set; {name} will be skipped."
            )

    if not any(config.get(f"enable_{name}") for name in ANALYZER_NAMES):
        issues.append("WARNING: no analyzers are enabled; reports will come from the pattern scanner only.")

    # -- Validator --
    validator_source = config.get("validator_source", "openai")
    if validator_source not in LLM_ANALYZER_NAMES:
        issues.append(
            f"ERROR: Invalid validator_source '{validator_source}'. "
            f"Must be one of: {', '.join(LLM_ANALYZER_NAMES)}"
        )
    elif config.get("use_validator") and not config.get(f"enable_{validator_source}"):
        issues.append(
            f"WARNING: use_validator is true but validator_source '{validator_source}' is not enabled. "
            "Reconciliation will fall back to the best single source."
        )

    # -- Enum values --
    log_level = str(config.get("log_level", "INFO")).upper()
    if log_level not in _VALID_LOG_LEVELS:
        issues.append(
            f"ERROR: Invalid log_level '{config.get('log_level')}'. "
            f"Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    output_format = config.get("output_format", "text")
    if output_format not in _VALID_OUTPUT_FORMATS:
        issues.append(
            f"ERROR: Invalid output_format '{output_format}'. "
            f"Must be one of: {', '.join(sorted(_VALID_OUTPUT_FORMATS))}"
        )

    # -- Numeric range checks --
    for key in ("deadline_ms", "analyzer_timeout", "tool_timeout", "max_code_size", "max_tokens"):
        value = config.get(key)
        if isinstance(value, (int, float)) and value <= 0:
            issues.append(f"ERROR: {key} must be > 0.")

    retry_max_attempts = config.get("retry_max_attempts", 2)
    if isinstance(retry_max_attempts, int) and retry_max_attempts < 1:
        issues.append("ERROR: retry_max_attempts must be >= 1.")

    threshold = config.get("similarity_threshold", 0.85)
    if isinstance(threshold, (int, float)) and not (0.0 < threshold <= 1.0):
        issues.append("ERROR: similarity_threshold must be in (0.0, 1.0].")

    deadline_ms = config.get("deadline_ms")
    timeout = config.get("analyzer_timeout")
    if isinstance(deadline_ms, (int, float)) and isinstance(timeout, (int, float)):
        if timeout * 1000 > deadline_ms:
            issues.append(
                "WARNING: analyzer_timeout exceeds deadline_ms; slow analyzers will be cut off by the deadline."
            )

    return issues
