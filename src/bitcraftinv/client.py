"""Async HTTP client for the bitjita.com data endpoints."""

import asyncio
import json
import random
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, List, Optional
import logging

import httpx

from .payloads import Envelope, PlayerRef, parse_item_catalog, parse_player_search, unwrap_payload
from .settings import AppConfig

logger = logging.getLogger(__name__)

SVELTEKIT_INVALIDATED = {'x-sveltekit-invalidated': '01'}
RETRY_STATUSES = (429, 503)
BASE_DELAYS = [1.0, 2.0, 4.0]


class ClientError(RuntimeError):
    """Raised when a request fails or returns a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _bool_param(value: bool) -> str:
    return 'true' if value else 'false'


class BitjitaClient:
    """Read-only client for player, inventory, item and market endpoints.

    Works against the upstream host or any proxy that relays the same paths.
    """

    def __init__(self, config: Optional[AppConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or AppConfig()
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            headers={
                'User-Agent': self.config.user_agent,
                'Accept': 'application/json',
            },
            timeout=self.config.timeout,
            transport=transport,
        )
        self._last_request_time = 0.0
        self._rate_lock: Optional[asyncio.Lock] = None
        self._catalog: Optional[Dict[str, Dict[str, Any]]] = None

    async def __aenter__(self) -> 'BitjitaClient':
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _rate_limit_wait(self):
        """Enforce the configured minimum interval between requests."""
        if self.config.rate_limit <= 0:
            return
        if self._rate_lock is None:
            # Created on first use so it binds to the running loop
            self._rate_lock = asyncio.Lock()
        async with self._rate_lock:
            loop = asyncio.get_running_loop()
            elapsed = loop.time() - self._last_request_time
            if elapsed < self.config.rate_limit:
                sleep_time = self.config.rate_limit - elapsed
                logger.debug(f"Rate limiting: sleeping for {sleep_time:.2f}s")
                await asyncio.sleep(sleep_time)
            self._last_request_time = loop.time()

    def _retry_delay(self, attempt: int) -> float:
        base = BASE_DELAYS[min(attempt, len(BASE_DELAYS) - 1)]
        return max(0.0, base + random.uniform(-0.2, 0.2))

    async def _get_with_retry(self, path: str, params: Optional[Dict[str, str]] = None) -> httpx.Response:
        """GET with exponential backoff on 429/503, timeouts and transport errors."""
        max_retries = self.config.max_retries
        for attempt in range(max_retries):
            last_attempt = attempt == max_retries - 1
            await self._rate_limit_wait()
            logger.debug(f"Attempt {attempt + 1}/{max_retries} for {path}")
            try:
                response = await self._client.get(path, params=params)
            except httpx.TimeoutException as e:
                if last_attempt:
                    raise ClientError(f"Timeout fetching {path} after {max_retries} attempts") from e
                delay = self._retry_delay(attempt)
                logger.warning(f"Request timeout, retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                continue
            except httpx.TransportError as e:
                if last_attempt:
                    raise ClientError(f"Error fetching {path}: {e}") from e
                delay = self._retry_delay(attempt)
                logger.warning(f"Request failed with {e}, retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                continue

            if response.status_code in RETRY_STATUSES and not last_attempt:
                delay = self._retry_delay(attempt)
                logger.warning(f"Rate limited (HTTP {response.status_code}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                continue
            return response

        raise ClientError(f"No response for {path}")

    async def get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        """Fetch a path and parse the body as JSON.

        Non-success statuses raise ClientError; a body that is not JSON is a
        decode miss and yields None.
        """
        response = await self._get_with_retry(path, params)
        if not response.is_success:
            raise ClientError(self._error_message(path, response), status_code=response.status_code)
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning(f"Response from {path} is not JSON")
            return None

    def _error_message(self, path: str, response: httpx.Response) -> str:
        message = f"HTTP {response.status_code} for {path}"
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return message
        # The proxy reports upstream failures as {"error": "..."}
        if isinstance(body, dict) and isinstance(body.get('error'), str):
            message = f"{message}: {body['error']}"
        return message

    async def get_payload(self, path: str, params: Optional[Dict[str, str]] = None) -> Envelope:
        """Fetch a path and unwrap its graph or plain JSON envelope."""
        document = await self.get_json(path, params)
        envelope = unwrap_payload(document)
        logger.debug(f"{path}: {envelope.kind} envelope")
        return envelope

    async def search_players(self, query: str) -> List[PlayerRef]:
        params = dict(SVELTEKIT_INVALIDATED, q=query)
        envelope = await self.get_payload('players/__data.json', params)
        return parse_player_search(envelope.value)

    async def get_player_page(self, player_id: str) -> Envelope:
        """Profile page data, which includes the inventories."""
        return await self.get_payload(f"players/{player_id}/__data.json", dict(SVELTEKIT_INVALIDATED))

    async def get_player_inventories(self, player_id: str) -> Envelope:
        """Plain JSON inventories of a player."""
        return await self.get_payload(f"api/players/{player_id}/inventories")

    async def get_item_catalog(self, refresh: bool = False) -> Dict[str, Dict[str, Any]]:
        """Global item catalog keyed by item id, cached for the client's lifetime."""
        if self._catalog is None or refresh:
            envelope = await self.get_payload('api/items')
            self._catalog = parse_item_catalog(envelope.value)
            logger.info(f"Loaded item catalog with {len(self._catalog)} entries")
        return self._catalog

    async def get_market(self, has_sell_orders: Optional[bool] = None,
                         has_buy_orders: Optional[bool] = None) -> Envelope:
        params = {}
        if has_sell_orders is not None:
            params['hasSellOrders'] = _bool_param(has_sell_orders)
        if has_buy_orders is not None:
            params['hasBuyOrders'] = _bool_param(has_buy_orders)
        return await self.get_payload('api/market', params or None)

    async def get_market_item(self, item_id: str) -> Envelope:
        return await self.get_payload(f"api/market/item/{item_id}")

    async def get_player_market(self, player_id: str) -> Envelope:
        return await self.get_payload(f"api/market/player/{player_id}")


async def fetch_in_batches(keys: Iterable[Hashable], fetch: Callable[[Any], Awaitable[Any]],
                           batch_size: int = 10) -> Dict[Any, Any]:
    """Run ``fetch`` for each distinct key in waves of at most batch_size.

    Each wave is awaited before the next starts. The result maps every key to
    its value, or to the exception its fetch raised.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    ordered = list(dict.fromkeys(keys))
    results: Dict[Any, Any] = {}
    for start in range(0, len(ordered), batch_size):
        wave = ordered[start:start + batch_size]
        outcomes = await asyncio.gather(*(fetch(key) for key in wave), return_exceptions=True)
        for key, outcome in zip(wave, outcomes):
            results[key] = outcome
    return results
