from __future__ import annotations

import asyncio
import json
from datetime import datetime
from http.client import HTTPException
from typing import Any, List
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from ..errors import BadStatusError, DeserializeError, ExchangeRejectedError, NetworkError
from ..exchange import DEFAULT_PAGE_SIZE, ExchangeClient
from ..ticks import AssetInfo, Tick, TradePage


KRAKEN_API = "https://api.kraken.com"
USER_AGENT = "cex-tick-feed/0.1"


def _build_trades_url(pair: str, since: str, base_url: str = KRAKEN_API) -> str:
    qs = urlencode({"pair": pair, "since": since})
    return f"{base_url.rstrip('/')}/0/public/Trades?{qs}"


def _build_asset_pairs_url(pair: str, base_url: str = KRAKEN_API) -> str:
    qs = urlencode({"pair": pair})
    return f"{base_url.rstrip('/')}/0/public/AssetPairs?{qs}"


def http_get_json(url: str, timeout: float = 15.0) -> Any:
    """GET `url` and decode its JSON body, mapping failures onto IngestError kinds."""
    req = Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urlopen(req, timeout=timeout) as resp:
            body = resp.read()
    except HTTPError as e:
        raise BadStatusError(e.code, url) from e
    except (URLError, HTTPException, OSError) as e:
        # timeouts and resets are OSErrors; a truncated body is an HTTPException
        raise NetworkError(f"request to {url} failed: {e}") from e
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DeserializeError(f"invalid JSON from {url}: {e}") from e


def _result_of(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise DeserializeError(f"unexpected Kraken response type: {type(payload)!r}")
    errors = payload.get("error") or []
    if errors:
        raise ExchangeRejectedError(errors)
    result = payload.get("result")
    if not isinstance(result, dict):
        raise DeserializeError("Kraken response has no result")
    return result


def parse_trades_payload(payload: Any) -> TradePage:
    """Map a /0/public/Trades response into a TradePage.

    Row format per Kraken docs:
      [ price, volume, time, buy/sell, market/limit, miscellaneous, trade_id ]
    The pair key in `result` may be Kraken's long form (XXBTZUSD for XBTUSD).
    """
    result = _result_of(payload)
    if "last" not in result:
        raise DeserializeError("Kraken trades result has no 'last' token")
    rows: List[Any] = []
    for key, value in result.items():
        if key != "last":
            rows = value
            break
    if not isinstance(rows, list):
        raise DeserializeError(f"Kraken trades are not a list: {type(rows)!r}")

    ticks: List[Tick] = []
    for row in rows:
        try:
            ticks.append(
                Tick(
                    sequence_id=int(row[6]),
                    timestamp_micros=int(round(float(row[2]) * 1_000_000)),
                    price=float(row[0]),
                    volume=float(row[1]),
                    side=str(row[3]),
                    order_type=str(row[4]),
                    misc=str(row[5]),
                )
            )
        except (IndexError, KeyError, TypeError, ValueError) as e:
            raise DeserializeError(f"malformed Kraken trade row {row!r}: {e}") from e
    return TradePage(ticks=ticks, last=str(result["last"]))


def parse_asset_pairs_payload(payload: Any, pair: str) -> AssetInfo:
    result = _result_of(payload)
    if not result:
        raise DeserializeError(f"Kraken returned no asset pair info for {pair}")
    info = next(iter(result.values()))
    try:
        return AssetInfo(
            pair=pair,
            price_decimals=int(info["pair_decimals"]),
            volume_decimals=int(info["lot_decimals"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DeserializeError(f"malformed Kraken asset pair info for {pair}: {e}") from e


class KrakenClient(ExchangeClient):
    name = "kraken"
    page_size = DEFAULT_PAGE_SIZE

    def __init__(self, base_url: str = KRAKEN_API, timeout: float = 15.0) -> None:
        self.base_url = base_url
        self.timeout = float(timeout)

    def initial_page_token(self, start: datetime) -> str:
        # Kraken accepts a unix timestamp in seconds as the first `since`
        return str(int(start.timestamp()))

    async def fetch_trades(self, pair: str, token: str) -> TradePage:
        url = _build_trades_url(pair, token, self.base_url)
        payload = await asyncio.to_thread(http_get_json, url, self.timeout)
        return parse_trades_payload(payload)

    async def fetch_asset_info(self, pair: str) -> AssetInfo:
        url = _build_asset_pairs_url(pair, self.base_url)
        payload = await asyncio.to_thread(http_get_json, url, self.timeout)
        return parse_asset_pairs_payload(payload, pair)
