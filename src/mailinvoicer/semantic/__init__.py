"""Semantic understanding module using LLM vision inference."""

from .inference import DocumentClassifier

__all__ = ["DocumentClassifier"]
