"""
Mode classification and response generation ports.
"""

from .classifier import (
    HttpModeClassifier,
    KeywordModeClassifier,
    LLMModeClassifier,
    ModeClassifier,
    clear_classification_cache,
    create_mode_classifier,
)
from .generator import LLMResponseGenerator, ResponseGenerator, create_response_generator

__all__ = [
    "HttpModeClassifier",
    "KeywordModeClassifier",
    "LLMModeClassifier",
    "LLMResponseGenerator",
    "ModeClassifier",
    "ResponseGenerator",
    "clear_classification_cache",
    "create_mode_classifier",
    "create_response_generator",
]
