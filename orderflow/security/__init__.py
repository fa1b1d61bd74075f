"""Signature helpers for inbound carrier webhooks."""

from .signatures import compute_signature, verify_signature

__all__ = ["compute_signature", "verify_signature"]
