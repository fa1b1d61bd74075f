"""Shared constants for the orderflow engine."""

DEFAULT_MAX_TRANSITION_ATTEMPTS = 3
STAGE_CHANGED_TOPIC = "orderflow.stage_changed"
SIGNATURE_HEADER = "X-Carrier-Signature"
SIGNATURE_PREFIX = "sha256="
