"""LLM providers, the provider registry and prompt scoring."""

from .base import DetectionResult, GenerateRequest, GenerateResult, LLMProvider
from .cloud import CloudProvider
from .ollama import OllamaProvider
from .openrouter import OpenRouterProvider
from .registry import ProviderRegistry
from .scoring import ScoringPipeline

__all__ = [
    "CloudProvider",
    "DetectionResult",
    "GenerateRequest",
    "GenerateResult",
    "LLMProvider",
    "OllamaProvider",
    "OpenRouterProvider",
    "ProviderRegistry",
    "ScoringPipeline",
]
