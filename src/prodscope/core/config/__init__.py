"""Configuration loading and validation."""

from .assertions import Assertion, AssertionSyntaxError, compile_assertion
from .loader import (
    ConfigError,
    load_all_recipes,
    load_app_config,
    load_origin_policies,
    load_recipe,
    validate_recipe_file,
)
from .models import (
    # Enums
    PatternStoreType,
    RecipeFieldType,
    RecipeTransform,
    RenderMode,
    # Config models
    AcquisitionHints,
    AppConfig,
    CircuitBreakerConfig,
    ExtractionConfig,
    LoggingConfig,
    OriginPolicy,
    OriginPolicyTable,
    PatternMemoryConfig,
    PlaywrightConfig,
    ProxyConfig,
    QualityConfig,
    Recipe,
    RecipeField,
    RenderConfig,
    RetryPolicy,
    TimeoutConfig,
)

__all__ = [
    # Enums
    "PatternStoreType",
    "RecipeFieldType",
    "RecipeTransform",
    "RenderMode",
    # Config models
    "AcquisitionHints",
    "AppConfig",
    "CircuitBreakerConfig",
    "ExtractionConfig",
    "LoggingConfig",
    "OriginPolicy",
    "OriginPolicyTable",
    "PatternMemoryConfig",
    "PlaywrightConfig",
    "ProxyConfig",
    "QualityConfig",
    "Recipe",
    "RecipeField",
    "RenderConfig",
    "RetryPolicy",
    "TimeoutConfig",
    # Assertions
    "Assertion",
    "AssertionSyntaxError",
    "compile_assertion",
    # Loaders
    "ConfigError",
    "load_app_config",
    "load_origin_policies",
    "load_recipe",
    "load_all_recipes",
    "validate_recipe_file",
]
