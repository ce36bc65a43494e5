"""Shared async HTTP request loop for the price and fee collaborators."""

import asyncio
from typing import Any, Dict, Optional, Type

import httpx

from walletchat.utils.config import settings
from walletchat.utils.errors import CollaboratorError
from walletchat.utils.logger import get_logger

logger = get_logger("http_service")


class HTTPService:
    """Base class for JSON-over-HTTP collaborators with retry logic."""

    error_class: Type[CollaboratorError] = CollaboratorError
    service_name = "http"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: Optional[float] = None, max_retries: Optional[int] = None,
                 backoff: float = 1.0):
        # transport is injectable so tests can use httpx.MockTransport
        self.transport = transport
        self.timeout = timeout if timeout is not None else settings.http_timeout
        self.max_retries = max_retries if max_retries is not None else settings.http_max_retries
        self.backoff = backoff

    async def _make_request(self, method: str, url: str, params: Optional[Dict] = None) -> Dict[str, Any]:
        """Make an HTTP request and return the decoded JSON body.

        Server errors and network errors are retried with exponential backoff;
        client errors are not.
        """
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                wait_time = min(self.backoff * 2 ** attempt, 10)
                logger.info(f"Retrying {self.service_name} request in {wait_time}s "
                            f"(attempt {attempt + 1}/{self.max_retries + 1})")
                await asyncio.sleep(wait_time)

            try:
                async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                    response = await client.request(method=method, url=url, params=params)
            except httpx.RequestError as e:
                logger.warning(f"Network error on attempt {attempt + 1}: {str(e)}")
                if attempt < self.max_retries:
                    continue
                raise self.error_class(f"Network error after {self.max_retries + 1} attempts: {str(e)}")

            logger.debug(f"{method} {url} - Status: {response.status_code} (attempt {attempt + 1})")

            if response.status_code >= 500:
                logger.warning(f"Server error {response.status_code}, will retry if attempts remain")
                if attempt < self.max_retries:
                    continue
                raise self.error_class(f"Server error {response.status_code}", status_code=response.status_code)

            if response.status_code >= 400:
                logger.error(f"Client error {response.status_code} from {self.service_name}")
                raise self.error_class(f"Client error {response.status_code}", status_code=response.status_code)

            try:
                return response.json()
            except ValueError as e:
                logger.error(f"Invalid JSON response: {e}")
                if attempt < self.max_retries:
                    continue
                raise self.error_class(f"Invalid JSON response from {self.service_name}",
                                       status_code=response.status_code)

        raise self.error_class("Maximum retry attempts exhausted")
