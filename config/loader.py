"""
Configuration Loader - Loads and validates login guard configuration

Usage:
    from config.loader import get_config

    config = get_config()
    print(config.max_attempts_before_captcha)
    print(config.store_backend)

Sources, later ones win:
1. Built-in defaults
2. Optional YAML file (path in LOGIN_GUARD_CONFIG), with ${VAR} / ${VAR:-default}
   substitution
3. Environment variables (LOGIN_GUARD_*, REDIS_URL, SUPABASE_*)

The merged result is validated against config/schema.json and against the
lockout policy rules. Anything invalid raises PolicyMisconfiguration, which
is meant to stop the process at startup.
"""

import yaml
import json
import os
import re
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from jsonschema import validate, ValidationError

from loginguard.services.lockout_policy import LockoutPolicy
from loginguard.utils.errors import PolicyMisconfiguration

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.json"

DEFAULTS: Dict[str, Any] = {
    "max_attempts_before_captcha": 3,
    "max_attempts_before_lockout": 4,
    "lockout_duration_seconds": 1800,
    "record_ttl_seconds": 86400,
    "store_backend": "memory",
    "redis_url": None,
    "supabase_url": None,
    "supabase_service_key": None,
    "supabase_anon_key": None,
    "store_timeout_seconds": 2.0,
    "circuit_failure_threshold": 5,
    "circuit_recovery_seconds": 30,
    "login_paths": ["/login", "/api/v1/auth/login"],
    "trust_proxy_headers": True,
    "default_locale": "de",
}

# env var -> (config key, parser)
ENV_VARS = {
    "LOGIN_GUARD_MAX_ATTEMPTS_BEFORE_CAPTCHA": ("max_attempts_before_captcha", "int"),
    "LOGIN_GUARD_MAX_ATTEMPTS_BEFORE_LOCKOUT": ("max_attempts_before_lockout", "int"),
    "LOGIN_GUARD_LOCKOUT_SECONDS": ("lockout_duration_seconds", "float"),
    "LOGIN_GUARD_RECORD_TTL_SECONDS": ("record_ttl_seconds", "float"),
    "LOGIN_GUARD_STORE": ("store_backend", "str"),
    "REDIS_URL": ("redis_url", "str"),
    "SUPABASE_URL": ("supabase_url", "str"),
    "SUPABASE_SERVICE_KEY": ("supabase_service_key", "str"),
    "SUPABASE_ANON_KEY": ("supabase_anon_key", "str"),
    "LOGIN_GUARD_STORE_TIMEOUT": ("store_timeout_seconds", "float"),
    "LOGIN_GUARD_CIRCUIT_THRESHOLD": ("circuit_failure_threshold", "int"),
    "LOGIN_GUARD_CIRCUIT_RECOVERY": ("circuit_recovery_seconds", "float"),
    "LOGIN_GUARD_PATHS": ("login_paths", "list"),
    "LOGIN_GUARD_TRUST_PROXY": ("trust_proxy_headers", "bool"),
    "LOGIN_GUARD_LOCALE": ("default_locale", "str"),
}


def _parse_env(name: str, raw: str, kind: str) -> Any:
    try:
        if kind == "int":
            return int(raw)
        if kind == "float":
            return float(raw)
        if kind == "bool":
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if kind == "list":
            return [item.strip() for item in raw.split(",") if item.strip()]
    except ValueError as e:
        raise PolicyMisconfiguration(f"{name} has invalid value {raw!r}: {e}") from e
    return raw.strip()


def _substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in config values

    Supports: ${VAR_NAME} or ${VAR_NAME:-default_value}
    """
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        pattern = r'\$\{([A-Z_]+)(?::-([^}]+))?\}'

        def replacer(match):
            var_name = match.group(1)
            default = match.group(2)
            return os.getenv(var_name, default or '')

        return re.sub(pattern, replacer, obj)
    else:
        return obj


class GuardConfig:
    """Validated login guard configuration"""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """
        Args:
            config_path: YAML file to overlay on defaults (defaults to LOGIN_GUARD_CONFIG)
            environ: Environment mapping (defaults to os.environ)
        """
        environ = os.environ if environ is None else environ
        config_path = config_path or environ.get("LOGIN_GUARD_CONFIG")

        self.config: Dict[str, Any] = dict(DEFAULTS)
        self.config_path = Path(config_path) if config_path else None

        if self.config_path is not None:
            self.config.update(self._load_yaml())

        for name, (key, kind) in ENV_VARS.items():
            raw = environ.get(name)
            if raw is not None and raw != "":
                self.config[key] = _parse_env(name, raw, kind)

        self._validate_config()

    def _load_yaml(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise PolicyMisconfiguration(f"Configuration file not found: {self.config_path}")
        with open(self.config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
        section = loaded.get("login_guard", loaded)
        return _substitute_env_vars(section)

    def _validate_config(self):
        """Validate against JSON schema, then against lockout policy rules"""
        with open(SCHEMA_PATH, 'r') as f:
            schema = json.load(f)

        try:
            validate(instance=self.config, schema=schema)
        except ValidationError as e:
            raise PolicyMisconfiguration(f"Configuration validation failed: {e.message}") from e

        # Threshold and duration rules live in the policy itself
        self.build_policy()

        if self.store_backend == "redis" and not self.redis_url:
            raise PolicyMisconfiguration("LOGIN_GUARD_STORE=redis requires REDIS_URL")
        if self.store_backend == "supabase" and not (self.supabase_url and self.supabase_service_key):
            raise PolicyMisconfiguration(
                "LOGIN_GUARD_STORE=supabase requires SUPABASE_URL and SUPABASE_SERVICE_KEY"
            )

    def build_policy(self) -> LockoutPolicy:
        return LockoutPolicy(
            max_attempts_before_captcha=self.max_attempts_before_captcha,
            max_attempts_before_lockout=self.max_attempts_before_lockout,
            lockout_duration_seconds=self.lockout_duration_seconds,
        )

    # ==================== Policy ====================

    @property
    def max_attempts_before_captcha(self) -> int:
        return self.config['max_attempts_before_captcha']

    @property
    def max_attempts_before_lockout(self) -> int:
        return self.config['max_attempts_before_lockout']

    @property
    def lockout_duration_seconds(self) -> float:
        return self.config['lockout_duration_seconds']

    @property
    def record_ttl_seconds(self) -> float:
        return self.config['record_ttl_seconds']

    # ==================== Storage ====================

    @property
    def store_backend(self) -> str:
        return self.config['store_backend']

    @property
    def redis_url(self) -> Optional[str]:
        return self.config.get('redis_url')

    @property
    def supabase_url(self) -> Optional[str]:
        return self.config.get('supabase_url')

    @property
    def supabase_service_key(self) -> Optional[str]:
        return self.config.get('supabase_service_key')

    @property
    def supabase_anon_key(self) -> Optional[str]:
        return self.config.get('supabase_anon_key')

    @property
    def store_timeout_seconds(self) -> float:
        return self.config['store_timeout_seconds']

    @property
    def circuit_failure_threshold(self) -> int:
        return self.config['circuit_failure_threshold']

    @property
    def circuit_recovery_seconds(self) -> float:
        return self.config['circuit_recovery_seconds']

    # ==================== HTTP ====================

    @property
    def login_paths(self) -> List[str]:
        return list(self.config['login_paths'])

    @property
    def trust_proxy_headers(self) -> bool:
        return self.config['trust_proxy_headers']

    @property
    def default_locale(self) -> str:
        return self.config['default_locale']

    def to_dict(self) -> Dict[str, Any]:
        """Configuration without secrets, for diagnostics"""
        safe = dict(self.config)
        if safe.get('supabase_service_key'):
            safe['supabase_service_key'] = '***'
        if safe.get('redis_url') and '@' in safe['redis_url']:
            safe['redis_url'] = safe['redis_url'].split('@')[-1]
        return safe


_config: Optional[GuardConfig] = None


def get_config() -> GuardConfig:
    """Get the process-wide GuardConfig, loading it on first use"""
    global _config
    if _config is None:
        _config = GuardConfig()
        logger.info(
            f"Login guard config loaded (captcha after {_config.max_attempts_before_captcha}, "
            f"lock at {_config.max_attempts_before_lockout}, "
            f"{_config.lockout_duration_seconds}s lockout, store={_config.store_backend})"
        )
    return _config


def reset_config() -> None:
    """Forget the cached config (tests)"""
    global _config
    _config = None
