"""Embedding vector helpers."""

from .codec import decode_vector, encode_vector, is_valid_component, repair_vector

__all__ = ["decode_vector", "encode_vector", "is_valid_component", "repair_vector"]
