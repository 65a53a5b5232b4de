"""Config loading for ai-run.

Config files are Python. Set variables at module level:

    ~/.ai-run/config.py     global
    .ai-run.py              project (found walking up from cwd, overrides global)

Invalid values never fail a run: they fall back to the default with a warning.
"""

import os
from dataclasses import dataclass

import httpx

from protocol import (
    AI_TIMEOUT, DEFAULT_AI_CONFIDENCE_THRESHOLD, DEFAULT_API_URL, DEFAULT_MODEL,
    MAX_FIXES, ConfigError,
)
from term import warn

PROJECT_CONFIG_NAME = ".ai-run.py"


def config_dir():
    return os.environ.get("AI_RUN_HOME") or os.path.expanduser("~/.ai-run")


DEFAULTS = {
    "ai_enabled": True,
    "ai_confidence_threshold": DEFAULT_AI_CONFIDENCE_THRESHOLD,
    "max_fixes": MAX_FIXES,
    "learning_mode": False,
    "model": DEFAULT_MODEL,
    "api_url": DEFAULT_API_URL,
    "ai_timeout": AI_TIMEOUT,
    "patterns_file": None,
    "redact": True,
}


@dataclass(frozen=True)
class Config:
    ai_enabled: bool = True
    ai_confidence_threshold: float = DEFAULT_AI_CONFIDENCE_THRESHOLD
    max_fixes: int = MAX_FIXES
    learning_mode: bool = False
    model: str = DEFAULT_MODEL
    api_url: str = DEFAULT_API_URL
    ai_timeout: float = AI_TIMEOUT
    patterns_file: str | None = None
    redact: bool = True
    api_key: str = ""
    project_config: str | None = None


# --- Validators: return the clean value or raise ConfigError ---

def _bool(value):
    if isinstance(value, bool):
        return value
    raise ConfigError(f"expected True or False, got {value!r}")


def _threshold(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"expected a number, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise ConfigError(f"must be between 0 and 1, got {value}")
    return float(value)


def _max_fixes(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"expected an integer, got {value!r}")
    if value < 1:
        raise ConfigError(f"must be at least 1, got {value}")
    # Hard cap: never more than MAX_FIXES, silently
    return min(value, MAX_FIXES)


def _timeout(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"expected a number of seconds, got {value!r}")
    if not 0 < value <= AI_TIMEOUT:
        raise ConfigError(f"must be in (0, {AI_TIMEOUT:g}], got {value}")
    return float(value)


def _text(value):
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ConfigError(f"expected a non-empty string, got {value!r}")


def _url(value):
    text = _text(value)
    try:
        url = httpx.URL(text)
    except httpx.InvalidURL as e:
        raise ConfigError(f"invalid URL {text!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(f"expected an http(s) URL, got {text!r}")
    return text


def _optional_path(value):
    if value is None:
        return None
    return os.path.expanduser(_text(value))


VALIDATORS = {
    "ai_enabled": _bool,
    "ai_confidence_threshold": _threshold,
    "max_fixes": _max_fixes,
    "learning_mode": _bool,
    "model": _text,
    "api_url": _url,
    "ai_timeout": _timeout,
    "patterns_file": _optional_path,
    "redact": _bool,
}


def _exec_config(path):
    """Execute a Python config file and return its namespace as a dict."""
    ns = {"__builtins__": __builtins__}
    try:
        with open(path) as f:
            exec(f.read(), ns)
    except FileNotFoundError:
        return {}
    except Exception as e:
        warn(f"Error in {path}: {e} (ignored)")
        return {}
    # Extract user-defined names (skip dunders and modules)
    return {k: v for k, v in ns.items() if not k.startswith("_")}


def find_project_config(start=None):
    """Walk up from start (default: cwd) to find .ai-run.py (stops at git root or /)."""
    d = os.path.abspath(start or os.getcwd())
    while True:
        candidate = os.path.join(d, PROJECT_CONFIG_NAME)
        if os.path.isfile(candidate):
            return candidate
        if os.path.isdir(os.path.join(d, ".git")):
            break
        parent = os.path.dirname(d)
        if parent == d:
            break
        d = parent
    return None


def get_api_key():
    """Look up API key: env var > key file."""
    key = os.environ.get("ANTHROPIC_API_KEY", "")
    if not key:
        keyfile = os.path.join(config_dir(), "api_key")
        if os.path.exists(keyfile):
            try:
                with open(keyfile) as f:
                    key = f.read().strip()
            except OSError as e:
                warn(f"could not read {keyfile}: {e}")
    return key


def config_from_dict(raw, api_key="", project_config=None):
    """Validate a raw settings dict into a Config. Bad values -> defaults."""
    values = {}
    for key, default in DEFAULTS.items():
        if key not in raw:
            values[key] = default
            continue
        try:
            values[key] = VALIDATORS[key](raw[key])
        except ConfigError as e:
            warn(f"config: {key}: {e}; using default {default!r}")
            values[key] = default
    return Config(api_key=api_key, project_config=project_config, **values)


def load_config(cwd=None):
    """Load config: defaults <- ~/.ai-run/config.py <- .ai-run.py (project-local)."""
    raw = {}
    raw.update(_exec_config(os.path.join(config_dir(), "config.py")))

    project_path = find_project_config(cwd)
    if project_path:
        raw.update(_exec_config(project_path))

    return config_from_dict(raw, api_key=get_api_key(), project_config=project_path)


def generate_config(cwd=None):
    """Write a starter .ai-run.py into cwd. Returns its path."""
    path = os.path.join(cwd or os.getcwd(), PROJECT_CONFIG_NAME)
    if os.path.exists(path):
        raise ConfigError(f"{path} already exists")

    lines = [
        "# .ai-run.py -- project config for ai-run",
        "",
        "# --- Defaults (uncomment to override) ---",
        "",
        "# ai_enabled = True              # ask the LLM when ANTHROPIC_API_KEY is set",
        f"# ai_confidence_threshold = {DEFAULT_AI_CONFIDENCE_THRESHOLD}   # AI wins above this",
        f"# max_fixes = {MAX_FIXES}                   # 1..{MAX_FIXES}",
        "# learning_mode = False          # show why each fix was suggested",
        f'# model = "{DEFAULT_MODEL}"',
        f'# api_url = "{DEFAULT_API_URL}"',
        f"# ai_timeout = {AI_TIMEOUT:g}                # seconds, at most {AI_TIMEOUT:g}",
        "# redact = True                  # scrub secrets before sending stderr to the LLM",
        "",
        "# --- Project patterns ---",
        "# JSON list of rules, checked before the built-in ones:",
        '# [{"id": "my-rule", "error_type": "configuration_error",',
        '#   "regex": "MYAPP_HOME is not set", "confidence": 0.9,',
        '#   "fixes": [{"command": "export MYAPP_HOME=$PWD", "explanation": "point it here", "risk": "low"}]}]',
        "",
        '# patterns_file = ".ai-run-patterns.json"',
        "",
    ]
    with open(path, "w") as f:
        f.write("\n".join(lines))
    return path
