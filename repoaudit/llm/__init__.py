"""Inference gateway adapters."""

from .runner import InferenceError, LLMRequest, LLMRunner, StructuredOutputError

__all__ = ["InferenceError", "LLMRequest", "LLMRunner", "StructuredOutputError"]
