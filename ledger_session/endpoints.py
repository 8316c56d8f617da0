"""
Endpoint Prober — selects the ledger endpoints that currently answer.

Every candidate URI is probed once, concurrently, with a GET request
bounded by a total timeout. A failure on one endpoint never affects
the others; an empty result is a normal outcome.
"""
import asyncio
import logging
from typing import Optional
from collections.abc import Sequence

import aiohttp

logger = logging.getLogger("ledger.endpoints")


class EndpointProber:
    """Concurrent single-shot liveness check for ledger endpoints."""

    def __init__(
        self,
        timeout: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if timeout <= 0:
            raise ValueError(f"Probe timeout must be positive, got {timeout}")
        self._timeout = timeout
        self._session = session

    @property
    def timeout(self) -> float:
        return self._timeout

    async def _check(self, session: aiohttp.ClientSession, uri: str) -> bool:
        """Return True if ``uri`` answers a GET with HTTP 200."""
        logger.info("Testing connection to node %s...", uri)
        try:
            async with session.get(
                uri, timeout=aiohttp.ClientTimeout(total=self._timeout)
            ) as response:
                if response.status == 200:
                    logger.info("Node %s successfully added.", uri)
                    return True
                logger.warning(
                    "Node %s answered with status %s.", uri, response.status
                )
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            logger.warning("Node %s is not available: %s", uri, err)
            return False

    async def probe(self, uris: Sequence[str]) -> list[str]:
        """Probe ``uris`` concurrently.

        Args:
            uris: Ordered candidate endpoint URIs.

        Returns:
            The URIs that answered successfully, in input order
            and without duplicates. Empty when none answered.
        """
        candidates = list(dict.fromkeys(uris))
        if not candidates:
            return []
        if self._session is not None:
            results = await self._gather(self._session, candidates)
        else:
            async with aiohttp.ClientSession() as session:
                results = await self._gather(session, candidates)
        live = [uri for uri, ok in zip(candidates, results) if ok is True]
        if not live:
            logger.error("No ledger endpoints are available for connection!")
        return live

    async def _gather(
        self, session: aiohttp.ClientSession, candidates: list[str]
    ) -> list:
        tasks = [self._check(session, uri) for uri in candidates]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for uri, result in zip(candidates, results):
            if isinstance(result, BaseException):
                logger.warning("Probe of %s failed: %s", uri, result)
        return results
