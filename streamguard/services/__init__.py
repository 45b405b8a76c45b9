"""
StreamGuard - Services Package
==============================

External service integrations used by the moderation engine.

DESIGN:
    Services wrap third-party APIs behind a small protocol so the engine
    depends only on the contract. They:
    - Are async-compatible for non-blocking I/O
    - Turn backend failures into typed errors
    - Are wrapped by GuardedClassifier so moderation fails open

Available Services:
    OpenAIClassifier: Toxicity/emotion classification via OpenAI chat models
    GuardedClassifier: Timeout, circuit breaker and cache around any classifier
"""

# =============================================================================
# Service Imports
# =============================================================================

from .classifier import (
    Classifier,
    ClassifierResult,
    GuardedClassifier,
    OpenAIClassifier,
    decode_classifier_response,
)


# =============================================================================
# Module Export
# =============================================================================

__all__ = [
    "Classifier",
    "ClassifierResult",
    "GuardedClassifier",
    "OpenAIClassifier",
    "decode_classifier_response",
]
