import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "provider": "deepseek",
    "model": None,  # None = provider default
    "concurrency": 5,
    "max_attempts": 3,
    "backoff_base": 2.0,  # seconds before the second attempt; doubles per attempt
    "backoff_max": 300.0,
    "poll_interval": 1.0,
    "timeouts": {"fetch": 30.0, "review": 120.0, "deliver": 30.0},
    "max_diff_chars": 100000,
    "max_chars_per_file": 20000,
    "batch_limit": 60,
    "exclude": [],  # substrings or fnmatch patterns; matching files are not sent as context
    "rules": None,  # None = built-in default rules; set to a path string to override
    "repo_rules": {},  # "owner/repo" -> rules file path
    "plans": {},  # plan tier -> review units per period, merged over DEFAULT_PLAN_LIMITS
    "store": "memory",  # "memory" | "sqlite"
    "store_path": ".prsentry.db",
}

DEFAULT_RULES = """# Code Review Guidelines

You are acting as a Senior Software Engineer. Review the code based on the following guidelines.
Focus on code quality, performance, security, and maintainability.

## Focus Areas
- **Security**: No hardcoded secrets, proper input validation
- **Performance**: Efficient algorithms, no N+1 queries
- **Code Quality**: DRY principle, SOLID principles, proper error handling
- **Best Practices**: Follow language-specific conventions"""

_API_KEY_ENV = {
    "deepseek": "DEEPSEEK_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


def load_config(config_path: str = ".prsentry.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prsentry.yml in the current directory
      3. CLI argument overrides
    """
    config = {
        **DEFAULT_CONFIG,
        "timeouts": dict(DEFAULT_CONFIG["timeouts"]),
        "exclude": list(DEFAULT_CONFIG["exclude"]),
        "repo_rules": {},
        "plans": {},
    }

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        # Partial timeout tables only override the steps they name.
        timeouts = file_config.pop("timeouts", None) or {}
        config.update(file_config)
        config["timeouts"].update(timeouts)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["api_keys"] = {name: os.environ.get(env) for name, env in _API_KEY_ENV.items()}

    return config


def api_key_env(provider: str) -> str:
    return _API_KEY_ENV.get(provider, f"{provider.upper().replace('-', '_')}_API_KEY")


def load_rules(config: dict, repo: str | None = None) -> str:
    """
    Load the review rules text for a repository.

    A ``repo_rules`` entry for the repo wins, then the global ``rules`` path,
    then the built-in default rules.
    """
    custom_path = (config.get("repo_rules") or {}).get(repo) if repo else None
    custom_path = custom_path or config.get("rules")
    if custom_path:
        p = Path(custom_path)
        if not p.exists():
            raise FileNotFoundError(f"Rules file not found: {custom_path}")
        return p.read_text()

    return DEFAULT_RULES
