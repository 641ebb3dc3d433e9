"""
Scraper configuration.

Every knob is a named, validated field resolved once per session. Persona
dictionaries (loaded elsewhere) are validated against PersonaSchema and turned
into EngagementConfig through EngagementConfig.from_persona, so the rest of the
code never does ad hoc optional-field lookups. Validation failures surface as
ConfigError.
"""

from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from IG_Reels_Scraper.src.errors import ConfigError


# ============================================================================
# DEFAULTS
# ============================================================================

FEED_URL = "https://www.instagram.com/reels/"
DEFAULT_LIKE_PROBABILITY = 0.15
DEFAULT_COMMENT_PROBABILITY = 0.05
DEFAULT_SHARE_PROBABILITY = 0.02
DEFAULT_WATCH_SECONDS = (4.0, 6.0)
DEFAULT_ENGAGEMENT_DELAY_SECONDS = (2.0, 5.0)


def _check_range(name: str, value: Tuple[float, float]) -> Tuple[float, float]:
    try:
        low, high = float(value[0]), float(value[1])
    except (TypeError, ValueError, IndexError):
        raise ConfigError(f"{name} must be a (min, max) pair, got {value!r}")
    if low < 0 or high < low:
        raise ConfigError(f"{name} must satisfy 0 <= min <= max, got {value!r}")
    return low, high


@dataclass(frozen=True)
class NavigationConfig:
    """
    Navigation engine policy.

    - verify_timeout bounds how long one strategy waits for the item id to change;
      last_resort_verify_timeout applies to the final page-scroll strategy.
    - After heuristic_min_wait seconds and heuristic_ratio of the bound, a ready
      video element is accepted as a transition even if the id did not change.
    - Backoff before retrying a failed advance is
      min(backoff_base * 2**(n-1), backoff_max) plus uniform jitter in [0, backoff_jitter].
    """

    feed_url: str = FEED_URL
    verify_timeout: float = 8.0
    last_resort_verify_timeout: float = 10.0
    poll_interval: float = 0.3
    poll_jitter: float = 0.1
    heuristic_min_wait: float = 2.0
    heuristic_ratio: float = 0.7

    max_consecutive_failures: int = 3
    max_cumulative_failures: int = 5
    backoff_base: float = 2.0
    backoff_max: float = 15.0
    backoff_jitter: float = 2.0

    key_attempts: int = 3
    button_attempts: int = 3
    gesture_attempts: int = 1
    attempt_pause: Tuple[float, float] = (1.0, 2.0)

    def __post_init__(self) -> None:
        if self.verify_timeout <= 0 or self.last_resort_verify_timeout <= 0:
            raise ConfigError("verify timeouts must be > 0")
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be > 0")
        if self.poll_jitter < 0:
            raise ConfigError("poll_jitter must be >= 0")
        if not (0.0 < self.heuristic_ratio <= 1.0):
            raise ConfigError("heuristic_ratio must be in (0, 1]")
        if self.max_consecutive_failures < 1:
            raise ConfigError("max_consecutive_failures must be >= 1")
        if self.max_cumulative_failures < self.max_consecutive_failures:
            raise ConfigError("max_cumulative_failures must be >= max_consecutive_failures")
        if self.backoff_base < 0 or self.backoff_max < self.backoff_base:
            raise ConfigError("backoff must satisfy 0 <= backoff_base <= backoff_max")
        if self.backoff_jitter < 0:
            raise ConfigError("backoff_jitter must be >= 0")
        for name in ("key_attempts", "button_attempts", "gesture_attempts"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1")
        _check_range("attempt_pause", self.attempt_pause)


# ============================================================================
# PERSONA SCHEMA
# ============================================================================

NonNegativeFloat = Annotated[float, Field(ge=0.0)]
Probability = Annotated[float, Field(ge=0.0, le=1.0)]


class SecondsRange(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    min: Optional[NonNegativeFloat] = None
    max: Optional[NonNegativeFloat] = None

    def resolve(self, default: Tuple[float, float]) -> Tuple[float, float]:
        return (
            default[0] if self.min is None else self.min,
            default[1] if self.max is None else self.max,
        )


class EngagementActionSection(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    enabled: Optional[bool] = None
    probability: Optional[Probability] = None
    delay_seconds: Optional[SecondsRange] = None


class WatchSection(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    duration_seconds: Optional[SecondsRange] = None


class EngagementSection(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    likes: Optional[EngagementActionSection] = None
    comments: Optional[EngagementActionSection] = None
    shares: Optional[EngagementActionSection] = None
    watch: Optional[WatchSection] = None


class PersonaSchema(BaseModel):
    # Persona files carry more than engagement settings; only this section is read here
    model_config = ConfigDict(extra="ignore", frozen=True)

    engagement: Optional[EngagementSection] = None


def _format_validation_errors(err: ValidationError, what: str) -> str:
    lines = [f"Invalid {what}:"]
    for item in err.errors():
        loc = ".".join(str(part) for part in item.get("loc", [])) or "<root>"
        lines.append(f"- {loc}: {item.get('msg', 'invalid value')}")
    return "\n".join(lines)


def _validate(schema, raw: Any, what: str):
    try:
        return schema.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(_format_validation_errors(e, what)) from e


# ============================================================================
# RESOLVED CONFIG
# ============================================================================

@dataclass(frozen=True)
class EngagementActionConfig:
    enabled: bool = True
    probability: float = 0.0
    delay_range: Tuple[float, float] = DEFAULT_ENGAGEMENT_DELAY_SECONDS

    def __post_init__(self) -> None:
        if not (0.0 <= self.probability <= 1.0):
            raise ConfigError(f"probability must be between 0 and 1, got {self.probability}")
        _check_range("delay_range", self.delay_range)

    @classmethod
    def from_section(cls, section: Optional[EngagementActionSection],
                     default_probability: float) -> "EngagementActionConfig":
        if section is None:
            return cls(probability=default_probability)
        if section.enabled is False:
            return cls(enabled=False, probability=0.0)

        probability = section.probability
        if probability is None:
            probability = 1.0 if section.enabled else default_probability
        delay = section.delay_seconds or SecondsRange()
        return cls(
            enabled=True,
            probability=probability,
            delay_range=delay.resolve(DEFAULT_ENGAGEMENT_DELAY_SECONDS),
        )

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]], default_probability: float) -> "EngagementActionConfig":
        """Resolve one persona engagement entry such as {"enabled": true, "probability": 0.3}."""
        section = _validate(EngagementActionSection, raw or {}, "engagement entry")
        return cls.from_section(section, default_probability)


@dataclass(frozen=True)
class EngagementConfig:
    likes: EngagementActionConfig = field(
        default_factory=lambda: EngagementActionConfig(probability=DEFAULT_LIKE_PROBABILITY))
    comments: EngagementActionConfig = field(
        default_factory=lambda: EngagementActionConfig(probability=DEFAULT_COMMENT_PROBABILITY))
    shares: EngagementActionConfig = field(
        default_factory=lambda: EngagementActionConfig(probability=DEFAULT_SHARE_PROBABILITY))
    watch_range: Tuple[float, float] = DEFAULT_WATCH_SECONDS

    def __post_init__(self) -> None:
        _check_range("watch_range", self.watch_range)

    def action(self, kind: str) -> EngagementActionConfig:
        if kind not in ("likes", "comments", "shares"):
            raise ConfigError(f"Unknown engagement kind: {kind}")
        return getattr(self, kind)

    @classmethod
    def from_persona(cls, persona: Optional[Dict[str, Any]]) -> "EngagementConfig":
        """Raises ConfigError when the persona's engagement section does not validate."""
        section = _validate(PersonaSchema, persona or {}, "persona").engagement or EngagementSection()
        watch = (section.watch or WatchSection()).duration_seconds or SecondsRange()
        return cls(
            likes=EngagementActionConfig.from_section(section.likes, DEFAULT_LIKE_PROBABILITY),
            comments=EngagementActionConfig.from_section(section.comments, DEFAULT_COMMENT_PROBABILITY),
            shares=EngagementActionConfig.from_section(section.shares, DEFAULT_SHARE_PROBABILITY),
            watch_range=watch.resolve(DEFAULT_WATCH_SECONDS),
        )


@dataclass(frozen=True)
class SessionConfig:
    """
    Scrape loop timing and limits.

    The data-arrival poll waits min(arrival_poll_base + i * arrival_poll_step,
    arrival_poll_cap) seconds on attempt i, for arrival_poll_attempts attempts.
    The defaults wait at most 2.5 s before falling back to the rendered page.
    """

    arrival_poll_attempts: int = 5
    arrival_poll_base: float = 0.3
    arrival_poll_step: float = 0.1
    arrival_poll_cap: float = 1.0

    item_load_range: Tuple[float, float] = (2.0, 3.0)
    screenshot_delay_range: Tuple[float, float] = (1.5, 3.0)
    screenshot_timeout: float = 10.0
    screenshot_dir: str = "screenshots"
    settle_range: Tuple[float, float] = (2.0, 3.5)
    recovery_settle_range: Tuple[float, float] = (3.0, 5.0)

    drain_batch_size: int = 3
    max_recovery_attempts: int = 3
    max_consecutive_misses: int = 5
    prompt_check_every: int = 5
    channel_size: int = 256

    def __post_init__(self) -> None:
        if self.arrival_poll_attempts < 0:
            raise ConfigError("arrival_poll_attempts must be >= 0")
        if self.arrival_poll_base < 0 or self.arrival_poll_step < 0 or self.arrival_poll_cap < 0:
            raise ConfigError("arrival poll intervals must be >= 0")
        if self.screenshot_timeout <= 0:
            raise ConfigError("screenshot_timeout must be > 0")
        for name in ("item_load_range", "screenshot_delay_range", "settle_range", "recovery_settle_range"):
            _check_range(name, getattr(self, name))
        if self.drain_batch_size < 0:
            raise ConfigError("drain_batch_size must be >= 0")
        if self.max_recovery_attempts < 0:
            raise ConfigError("max_recovery_attempts must be >= 0")
        if self.max_consecutive_misses < 1:
            raise ConfigError("max_consecutive_misses must be >= 1")
        if self.prompt_check_every < 1:
            raise ConfigError("prompt_check_every must be >= 1")
        if self.channel_size < 1:
            raise ConfigError("channel_size must be >= 1")

    def arrival_intervals(self):
        for attempt in range(self.arrival_poll_attempts):
            yield min(self.arrival_poll_base + attempt * self.arrival_poll_step, self.arrival_poll_cap)
