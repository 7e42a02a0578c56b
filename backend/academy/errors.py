from __future__ import annotations


class AcademyError(Exception):
	"""Base class for errors the API turns into a status code."""

	status_code = 500


class ValidationError(AcademyError):
	status_code = 400


class NotFoundError(AcademyError):
	status_code = 404


class RateLimitedError(AcademyError):
	"""The AI provider reported quota exhaustion; the caller should retry later."""

	status_code = 429
