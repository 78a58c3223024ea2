"""Page acquisition decisions: render policy and API interception."""

from .interceptor import (
    API_SIGNATURES,
    InterceptedData,
    interpret_responses,
    signature_patterns,
    sniff_payload,
)
from .render_policy import PageSignals, RenderBudget, RenderDecision, RenderPolicy

__all__ = [
    "API_SIGNATURES",
    "InterceptedData",
    "interpret_responses",
    "signature_patterns",
    "sniff_payload",
    "PageSignals",
    "RenderBudget",
    "RenderDecision",
    "RenderPolicy",
]
