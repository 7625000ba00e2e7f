"""HTTP position source for a generic execution backend."""

import logging
from typing import Any

import httpx

from monitor.models import PositionFetchError


logger = logging.getLogger(__name__)


class HttpPositionSource:
    """Reads open positions from ``GET {base_url}{positions_path}``.

    The endpoint returns either a JSON list of position records or an object
    with a ``positions`` list. Transport errors, non-2xx statuses and
    malformed bodies all raise PositionFetchError; an empty list is a valid
    "no positions" answer.
    """

    def __init__(
        self,
        base_url: str,
        positions_path: str = "/positions",
        timeout_seconds: float = 10.0,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        self._positions_path = positions_path
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            headers=headers,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_open_positions(self) -> list[dict[str, Any]]:
        try:
            resp = await self._client.get(self._positions_path)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as e:
            raise PositionFetchError(
                f"Backend returned HTTP {e.response.status_code} for {self._positions_path}"
            ) from e
        except httpx.HTTPError as e:
            raise PositionFetchError(f"Backend unreachable: {e!r}") from e
        except ValueError as e:
            raise PositionFetchError("Backend returned invalid JSON") from e

        if isinstance(body, dict):
            body = body.get("positions")
        if not isinstance(body, list):
            raise PositionFetchError("Backend response has no positions list")

        logger.debug(f"Fetched {len(body)} open positions")
        return body
