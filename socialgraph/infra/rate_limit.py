"""Shared rate limiting primitives."""

from __future__ import annotations


class RateLimitExceeded(Exception):
	"""Raised when the rate limit has been hit."""
