"""Quality gate: validation, rescue and normalization of product records."""

from .gate import FieldIssue, Product, ProductSchema, QualityGate, ValidationResult

__all__ = ["FieldIssue", "Product", "ProductSchema", "QualityGate", "ValidationResult"]
