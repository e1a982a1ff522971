from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Mapping


class AbstractUpstreamResponse(ABC):
	"""An upstream response whose headers arrived and whose body is still pending."""

	status_code: int
	headers: list[tuple[str, str]]

	@abstractmethod
	def iter_chunks(self) -> AsyncIterator[bytes]:
		"""Yield the raw body chunk by chunk, in arrival order.

		Raises:
			UpstreamTransportError: If the connection fails mid-body.
		"""
		...

	@abstractmethod
	async def aclose(self) -> None:
		"""Release the underlying connection. Safe to call more than once."""
		...


class AbstractUpstreamClient(ABC):
	"""Interface for clients that open one streamed request to the photo API."""

	@abstractmethod
	async def open(
		self,
		method: str,
		url: str,
		*,
		headers: Mapping[str, str],
	) -> AbstractUpstreamResponse:
		"""Send the request and return once response headers are received.

		Args:
			method: HTTP method (GET or HEAD).
			url: Fully qualified upstream URL.
			headers: Outbound request headers.

		Returns:
			AbstractUpstreamResponse: Open response; the caller must aclose() it.

		Raises:
			UpstreamTransportError: If the upstream cannot be reached.
		"""
		...

	@abstractmethod
	async def aclose(self) -> None:
		"""Close pooled connections."""
		...
