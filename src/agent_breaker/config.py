"""agent_breaker.config

Configuration for Agent Breaker.

All limits are explicit with conservative defaults. A config is resolved once
and handed to the hooks at construction; nothing re-reads it per call.

Config files are JSON or JSONC. The guardrail settings may sit at the top
level or under a "guardrails" key:

    {
      // per-session limits
      "guardrails": {
        "max_tool_calls": 200,
        "warning_threshold": 0.75,
        "profiles": {"coder": {"max_tool_calls": 400}}
      }
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .errors import ConfigError

logger = logging.getLogger("agent_breaker.config")


# ================================
# Limits & Profiles
# ================================

@dataclass(frozen=True)
class GuardrailLimits:
    """The numeric limits that apply to one session, after profile merging."""

    max_tool_calls: int
    max_duration_minutes: float
    max_repetitions: int
    max_consecutive_errors: int
    warning_threshold: float


@dataclass
class GuardrailProfile:
    """Per-agent overrides. Fields left as None inherit the base config.

    Example:
        GuardrailProfile(max_tool_calls=400, max_duration_minutes=60)
    """

    max_tool_calls: Optional[int] = None
    max_duration_minutes: Optional[float] = None
    max_repetitions: Optional[int] = None
    max_consecutive_errors: Optional[int] = None
    warning_threshold: Optional[float] = None


# ================================
# Guardrails Config
# ================================

@dataclass
class GuardrailsConfig:
    """Thresholds for the per-session circuit breaker.

    A limit trips when the metric reaches it (>=). The soft warning fires
    when a metric reaches warning_threshold * limit.
    """

    enabled: bool = True

    # HARD LIMITS
    # -----------
    max_tool_calls: int = 200
    max_duration_minutes: float = 30
    # Length of the trailing run of identical (tool, args) calls.
    max_repetitions: int = 10
    max_consecutive_errors: int = 5

    # SOFT WARNING
    # ------------
    # Fraction of each hard limit at which the sticky warning is raised.
    warning_threshold: float = 0.75

    # SESSION HOUSEKEEPING
    # --------------------
    # Sessions older than this are swept when a new session is created.
    idle_timeout_minutes: float = 60

    # PER-AGENT PROFILES
    # ------------------
    # Example: {"coder": GuardrailProfile(max_tool_calls=400)}
    profiles: Dict[str, GuardrailProfile] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.enabled, bool):
            raise ConfigError("enabled must be a boolean")
        _validate_limits(
            self.max_tool_calls,
            self.max_duration_minutes,
            self.max_repetitions,
            self.max_consecutive_errors,
            self.warning_threshold,
            where="guardrails",
        )
        _number("idle_timeout_minutes", self.idle_timeout_minutes)
        if self.idle_timeout_minutes <= 0:
            raise ConfigError("idle_timeout_minutes must be > 0")
        for name, profile in self.profiles.items():
            if not isinstance(profile, GuardrailProfile):
                raise ConfigError(f"profile '{name}' must be a GuardrailProfile")
            merged = self._merge(profile)
            _validate_limits(
                merged.max_tool_calls,
                merged.max_duration_minutes,
                merged.max_repetitions,
                merged.max_consecutive_errors,
                merged.warning_threshold,
                where=f"profiles.{name}",
            )

    # --------------------------------
    # Helper methods
    # --------------------------------

    @property
    def stale_after_seconds(self) -> float:
        return float(self.idle_timeout_minutes) * 60.0

    def base_limits(self) -> GuardrailLimits:
        return GuardrailLimits(
            max_tool_calls=self.max_tool_calls,
            max_duration_minutes=self.max_duration_minutes,
            max_repetitions=self.max_repetitions,
            max_consecutive_errors=self.max_consecutive_errors,
            warning_threshold=self.warning_threshold,
        )

    def limits_for(self, agent_name: Optional[str]) -> GuardrailLimits:
        """Limits for a session owned by `agent_name` (profile over base)."""
        profile = self.profiles.get(agent_name or "")
        if profile is None:
            return self.base_limits()
        return self._merge(profile)

    def _merge(self, profile: GuardrailProfile) -> GuardrailLimits:
        base = asdict(self.base_limits())
        for key, value in asdict(profile).items():
            if value is not None:
                base[key] = value
        return GuardrailLimits(**base)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["profiles"] = {
            name: {k: v for k, v in asdict(p).items() if v is not None}
            for name, p in self.profiles.items()
        }
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GuardrailsConfig":
        """Build a config from a plain mapping.

        Accepts either the guardrail settings directly or a document with a
        "guardrails" section. Unknown keys are logged and ignored.
        """
        if not isinstance(data, Mapping):
            raise ConfigError("guardrails config must be a JSON object")
        section = data.get("guardrails", data)
        if not isinstance(section, Mapping):
            raise ConfigError("'guardrails' must be a JSON object")

        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in section.items():
            if key not in known:
                logger.warning("Ignoring unknown guardrails setting '%s'", key)
                continue
            if key == "profiles":
                kwargs["profiles"] = _profiles_from_dict(value)
            elif key == "enabled":
                kwargs[key] = value
            else:
                kwargs[key] = _number(key, value)
        return cls(**kwargs)


def _validate_limits(
    max_tool_calls: Any,
    max_duration_minutes: Any,
    max_repetitions: Any,
    max_consecutive_errors: Any,
    warning_threshold: Any,
    *,
    where: str,
) -> None:
    for key, value in (
        ("max_tool_calls", max_tool_calls),
        ("max_duration_minutes", max_duration_minutes),
        ("max_repetitions", max_repetitions),
        ("max_consecutive_errors", max_consecutive_errors),
        ("warning_threshold", warning_threshold),
    ):
        _number(f"{where}.{key}", value)
    if max_tool_calls < 1:
        raise ConfigError(f"{where}: max_tool_calls must be >= 1")
    if max_duration_minutes <= 0:
        raise ConfigError(f"{where}: max_duration_minutes must be > 0")
    if max_repetitions < 1:
        raise ConfigError(f"{where}: max_repetitions must be >= 1")
    if max_consecutive_errors < 1:
        raise ConfigError(f"{where}: max_consecutive_errors must be >= 1")
    if not 0.0 < warning_threshold < 1.0:
        raise ConfigError(f"{where}: warning_threshold must be between 0.0 and 1.0 (exclusive)")


def _number(key: str, value: Any) -> Union[int, float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number, got {type(value).__name__}")
    return value


def _profiles_from_dict(value: Any) -> Dict[str, GuardrailProfile]:
    if not isinstance(value, Mapping):
        raise ConfigError("profiles must be a JSON object keyed by agent name")
    known = {f.name for f in fields(GuardrailProfile)}
    profiles: Dict[str, GuardrailProfile] = {}
    for name, overrides in value.items():
        if not isinstance(overrides, Mapping):
            raise ConfigError(f"profile '{name}' must be a JSON object")
        kwargs = {}
        for key, v in overrides.items():
            if key not in known:
                logger.warning("Ignoring unknown setting '%s' in profile '%s'", key, name)
                continue
            kwargs[key] = _number(f"profiles.{name}.{key}", v)
        profiles[str(name)] = GuardrailProfile(**kwargs)
    return profiles


# ================================
# Loading
# ================================

def strip_json_comments(text: str) -> str:
    """Remove // line comments and /* block */ comments outside of strings."""
    out = []
    i, n = 0, len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                raise ConfigError("unterminated block comment in config")
            i = end + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def strip_trailing_commas(text: str) -> str:
    """Remove commas directly followed (modulo whitespace) by } or ], outside of strings."""
    out = []
    i, n = 0, len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def load_config(path: Optional[Union[str, Path]] = None) -> GuardrailsConfig:
    """Load and validate a guardrails config file.

    Returns the defaults when `path` is None or the file does not exist.
    """
    if path is None:
        return GuardrailsConfig()
    p = Path(path)
    if not p.exists():
        logger.info("No guardrails config at %s, using defaults", p)
        return GuardrailsConfig()
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"could not read {p}: {exc}", guidance="Check file permissions.") from exc
    try:
        data = json.loads(strip_trailing_commas(strip_json_comments(text)))
    except json.JSONDecodeError as exc:
        raise ConfigError(
            f"invalid JSON in {p}: {exc}",
            guidance="Fix the syntax error or delete the file to use defaults.",
        ) from exc
    return GuardrailsConfig.from_dict(data)
