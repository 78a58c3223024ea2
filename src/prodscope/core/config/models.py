"""
Pydantic configuration models for Prodscope.

These models provide type-safe configuration with validation for:
- Application settings (timeouts, resilience, render budget, quality gate)
- Per-origin policies
- Per-origin extraction recipes
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator

from prodscope.core.normalize.urls import host_matches, normalize_origin

from .assertions import Assertion, compile_assertions


# =============================================================================
# Enums
# =============================================================================


class RenderMode(str, Enum):
    """Per-origin rendering hint."""

    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


class PatternStoreType(str, Enum):
    """Storage used by pattern memory."""

    JSON = "json"
    SQL = "sql"


class RecipeFieldType(str, Enum):
    """Type coercion applied to a recipe field."""

    TEXT = "text"
    STRING = "string"
    NUMBER = "number"
    PRICE = "price"
    IMAGES = "images"
    ARRAY = "array"
    AVAILABILITY = "availability"
    BOOLEAN = "boolean"


class RecipeTransform(str, Enum):
    """Value transforms available to recipe fields."""

    EXTRACT_NUMBER = "extract_number"
    STRIP_CURRENCY = "strip_currency"
    LOWERCASE = "lowercase"
    UPPERCASE = "uppercase"
    TRIM = "trim"
    HIGH_QUALITY = "high_quality"


# =============================================================================
# Resilience Configuration
# =============================================================================


class RetryPolicy(BaseModel):
    """Bounded exponential backoff for one unit of work."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(
        default=4,
        ge=1,
        le=10,
        description="Total attempts including the first call",
    )
    base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Delay before the first retry in seconds",
    )
    max_delay: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound for any single delay in seconds",
    )
    factor: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential backoff multiplier",
    )
    jitter: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Random jitter as a fraction of the delay (applied +/-)",
    )

    @field_validator("max_delay")
    @classmethod
    def max_delay_gte_base(cls, v: float, info: Any) -> float:
        """Ensure max delay is at least the base delay."""
        base = info.data.get("base_delay", 0.0)
        if v < base:
            raise ValueError("max_delay must be >= base_delay")
        return v


class CircuitBreakerConfig(BaseModel):
    """Per-origin circuit breaker thresholds."""

    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Failures within the monitoring window that open the circuit",
    )
    reset_timeout: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds an open circuit waits before allowing trial calls",
    )
    monitoring_window: float = Field(
        default=120.0,
        gt=0.0,
        description="Window in seconds in which failures are counted",
    )
    half_open_attempts: int = Field(
        default=2,
        ge=1,
        description="Consecutive half-open successes needed to close",
    )
    history_size: int = Field(
        default=100,
        ge=1,
        description="Call events kept per origin",
    )


class TimeoutConfig(BaseModel):
    """Layered timeouts in seconds."""

    static_fetch: float = Field(default=10.0, gt=0.0, description="HTTP GET timeout")
    navigation: float = Field(default=30.0, gt=0.0, description="Browser navigation timeout")
    per_call: float = Field(default=90.0, gt=0.0, description="Overall timeout for one parse call")


# =============================================================================
# Origin Policy
# =============================================================================


class AcquisitionHints(BaseModel):
    """How an origin prefers to be fetched."""

    model_config = ConfigDict(frozen=True)

    render: RenderMode = Field(
        default=RenderMode.AUTO,
        description="Force or forbid browser rendering",
    )
    skip_static: bool = Field(
        default=False,
        description="Origin blocks plain HTTP clients; go straight to rendering",
    )
    api_patterns: list[str] = Field(
        default_factory=list,
        description="Regexes for API responses worth intercepting while rendering",
    )
    wait_for_selector: str | None = Field(
        default=None,
        description="Selector that signals product markup has rendered",
    )
    use_proxy: bool = Field(
        default=True,
        description="Allow the rendered-with-proxy fallback step",
    )


class OriginPolicy(BaseModel):
    """Per-hostname acquisition and resilience settings.

    Loaded once at startup and immutable for the rest of the run.
    """

    model_config = ConfigDict(frozen=True)

    hostname: str = Field(default="", description="Normalized hostname")
    timeout: float = Field(default=10.0, gt=0.0, description="Static fetch timeout")
    navigation_timeout: float = Field(default=30.0, gt=0.0, description="Navigation timeout")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers")
    acquisition: AcquisitionHints = Field(default_factory=AcquisitionHints)
    retry: RetryPolicy | None = Field(default=None, description="Retry override")
    circuit_breaker: CircuitBreakerConfig | None = Field(default=None, description="Breaker override")

    @field_validator("hostname")
    @classmethod
    def normalize_hostname(cls, v: str) -> str:
        return normalize_origin(v) if v else v


class OriginPolicyTable(Mapping[str, OriginPolicy]):
    """Read-only hostname -> OriginPolicy mapping with subdomain lookup."""

    def __init__(self, policies: Mapping[str, OriginPolicy], default: OriginPolicy | None = None):
        self._policies = MappingProxyType(
            {normalize_origin(host): policy for host, policy in policies.items()}
        )
        self._default = default or OriginPolicy()

    def __getitem__(self, key: str) -> OriginPolicy:
        return self._policies[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._policies)

    def __len__(self) -> int:
        return len(self._policies)

    def for_origin(self, origin: str) -> OriginPolicy:
        """Exact match first, then the longest parent-domain match, then defaults."""
        if origin in self._policies:
            return self._policies[origin]
        matches = [host for host in self._policies if host_matches(origin, host)]
        if matches:
            return self._policies[max(matches, key=len)]
        return self._default.model_copy(update={"hostname": origin})


# =============================================================================
# Render Policy Configuration
# =============================================================================


DEFAULT_PRODUCT_URL_PATTERNS = [
    r"/products?/",
    r"/p/",
    r"/dp/",
    r"/item/",
    r"/itm/",
    r"/shop/[^/]+/[^/]+",
    r"-p\d{4,}",
    r"/\d{6,}\.html",
    r"[?&](pid|sku|productid)=",
]

DEFAULT_SPA_MARKERS = [
    'id="__next"',
    "__NEXT_DATA__",
    "__NUXT__",
    'id="react-root"',
    "data-reactroot",
    'id="app"',
    "ng-version",
    "data-v-app",
    "window.__INITIAL_STATE__",
    "window.__PRELOADED_STATE__",
]

DEFAULT_LAZY_MARKERS = [
    "data-src=",
    "data-lazy-src=",
    "data-srcset=",
    'loading="lazy"',
    "lazyload",
]


class RenderConfig(BaseModel):
    """Render policy inputs and the hourly render budget."""

    hourly_budget: int = Field(
        default=100,
        ge=0,
        description="Renders allowed per budget window",
    )
    budget_window_seconds: float = Field(
        default=3600.0,
        gt=0.0,
        description="Length of the rolling budget window",
    )
    always_render: list[str] = Field(
        default_factory=lambda: [
            "farfetch.com",
            "ssense.com",
            "net-a-porter.com",
            "mytheresa.com",
            "matchesfashion.com",
        ],
        description="Origins that are always rendered",
    )
    never_render: list[str] = Field(
        default_factory=lambda: ["zara.com", "hm.com", "uniqlo.com", "asos.com", "nordstrom.com"],
        description="Origins that are never rendered",
    )
    completeness_threshold: float = Field(
        default=0.75,
        ge=0.0,
        le=1.0,
        description="Static extraction at or above this score skips rendering",
    )
    product_url_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_PRODUCT_URL_PATTERNS))
    spa_markers: list[str] = Field(default_factory=lambda: list(DEFAULT_SPA_MARKERS))
    lazy_markers: list[str] = Field(default_factory=lambda: list(DEFAULT_LAZY_MARKERS))
    history_size: int = Field(default=100, ge=1, description="Decisions kept for inspection")


# =============================================================================
# Quality Gate Configuration
# =============================================================================


class QualityConfig(BaseModel):
    """Quality gate thresholds."""

    allow_zero_price: bool = Field(
        default=False,
        description="Accept price == 0 ('contact for price' listings)",
    )
    max_price: float = Field(
        default=100000.0,
        gt=0.0,
        description="Prices above this are treated as extraction errors",
    )
    default_currency: str = Field(default="USD", min_length=3, max_length=3)
    min_description_length: int = Field(default=10, ge=0)
    validation_version: str = Field(default="1.0.0")


# =============================================================================
# Extraction Configuration
# =============================================================================


class ExtractionConfig(BaseModel):
    """Strategy priorities and extraction limits."""

    priorities: dict[str, int] = Field(
        default_factory=lambda: {
            "jsonld": 100,
            "recipe": 90,
            "microdata": 80,
            "meta_tags": 70,
            "heuristic": 50,
        },
        description="Strategy name -> priority (higher runs first)",
    )
    max_images: int = Field(default=10, ge=1, le=100)


# =============================================================================
# Browser / Proxy Configuration
# =============================================================================


class PlaywrightConfig(BaseModel):
    """Playwright rendering backend configuration."""

    enabled: bool = Field(default=True, description="Allow browser rendering at all")
    browser: str = Field(
        default="chromium",
        description="Browser to use: chromium, firefox, webkit",
    )
    headless: bool = Field(default=True)
    max_pages: int = Field(default=4, ge=1, le=32, description="Concurrent pages")
    viewport_width: int = Field(default=1920, ge=320, le=3840)
    viewport_height: int = Field(default=1080, ge=240, le=2160)
    user_agent: str | None = Field(default=None, description="Custom user agent string")
    stealth: bool = Field(default=True, description="Enable stealth mode to avoid bot detection")
    settle_ms: int = Field(default=1500, ge=0, le=30000, description="Post-load settle delay")


class ProxyConfig(BaseModel):
    """Proxy used by the rendered-with-proxy fallback step."""

    server: str | None = Field(default=None, description="e.g. http://proxy.example:8000")
    username: str | None = None
    password: str | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.server)


# =============================================================================
# Pattern Memory Configuration
# =============================================================================


class PatternMemoryConfig(BaseModel):
    """Learned-selector store."""

    enabled: bool = Field(default=True)
    backend: PatternStoreType = Field(default=PatternStoreType.JSON)
    path: Path = Field(default=Path("data/patterns.json"), description="JSON store path")
    database_url: str = Field(default="sqlite:///data/patterns.db", description="SQL store URL")
    learn_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum completeness score before selectors are learned",
    )
    seed_patterns: dict[str, dict[str, list[str]]] = Field(
        default_factory=dict,
        description="Built-in origin -> field -> selectors, overlaid by learned entries",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for file logs",
    )
    rich_console: bool = Field(
        default=True,
        description="Use Rich for console output",
    )


# =============================================================================
# Recipe Models
# =============================================================================


class RecipeField(BaseModel):
    """Selector chain and coercion for one recipe field."""

    selector: str | None = Field(default=None, description="Primary CSS selector")
    fallback: list[str] = Field(default_factory=list, description="Selectors tried in order")
    attribute: str | None = Field(default=None, description="Attribute to read instead of text")
    transform: RecipeTransform | None = Field(default=None)
    type: RecipeFieldType = Field(default=RecipeFieldType.TEXT)
    required: bool = Field(default=False)
    value: Any = Field(default=None, description="Static value used instead of a selector")

    @field_validator("transform", mode="before")
    @classmethod
    def normalize_transform(cls, v: Any) -> Any:
        """Accept camelCase spellings such as ``extractNumber``."""
        if isinstance(v, str):
            snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in v).lstrip("_")
            return snake
        return v

    @model_validator(mode="after")
    def selector_or_value(self) -> "RecipeField":
        if self.selector is None and self.value is None:
            raise ValueError("recipe field needs a selector or a static value")
        return self

    @property
    def selectors(self) -> list[str]:
        chain = [self.selector] if self.selector else []
        return chain + list(self.fallback)


class Recipe(BaseModel):
    """Declarative, versioned extraction recipe for one origin."""

    domain: str = Field(..., min_length=1)
    version: str = Field(default="1")
    selectors: dict[str, RecipeField] = Field(default_factory=dict)
    assertions: list[str] = Field(default_factory=list)

    _compiled: list[Assertion] = PrivateAttr(default_factory=list)

    @field_validator("domain")
    @classmethod
    def normalize_domain(cls, v: str) -> str:
        return normalize_origin(v)

    @field_validator("version", mode="before")
    @classmethod
    def version_as_string(cls, v: Any) -> str:
        return str(v)

    @field_validator("assertions")
    @classmethod
    def assertions_compile(cls, v: list[str]) -> list[str]:
        compile_assertions(v)
        return v

    def model_post_init(self, __context: Any) -> None:
        self._compiled = compile_assertions(self.assertions)

    @property
    def compiled_assertions(self) -> list[Assertion]:
        return self._compiled


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Root application configuration.

    This is the main configuration object loaded from app.yaml.
    """

    # Paths
    config_dir: Path = Field(default=Path("configs"), description="Configuration directory")
    recipes_dir: Path = Field(default=Path("configs/recipes"), description="Recipe YAML directory")
    origins_file: Path | None = Field(
        default=Path("configs/origins.yaml"),
        description="Origin policy file",
    )

    # Components
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    playwright: PlaywrightConfig = Field(default_factory=PlaywrightConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    pattern_memory: PatternMemoryConfig = Field(default_factory=PatternMemoryConfig)

    # Inline origin policies, merged under the origins file
    origins: dict[str, OriginPolicy] = Field(default_factory=dict)
    api_signatures: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Extra origin -> API URL regexes merged into the built-in table",
    )

    cache_ttl_seconds: int = Field(default=3600, ge=0)

    def default_origin_policy(self) -> OriginPolicy:
        return OriginPolicy(
            timeout=self.timeouts.static_fetch,
            navigation_timeout=self.timeouts.navigation,
        )
