"""
CCPI Snapshot Collector

Assembles a raw indicator mapping from live sources:
- FRED (St. Louis Fed) for rates, spreads, liquidity and VIX
- Yahoo Finance (yfinance) for QQQ history, volatility indices, SOX, DXY, NVDA
- A manual overrides file for series without a free live feed (AAII
  sentiment, valuation multiples, PMI)

Every source call has a timeout and bounded retries. A source that still
fails is simply left out, and normalization substitutes the registry default.
The scoring core never sees a partially resolved snapshot.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import httpx
import pandas as pd
import yfinance as yf

from ccpi.indicators import INDICATORS, IndicatorSnapshot
from ccpi.technicals import compute_qqq_technicals, momentum_score

logger = logging.getLogger(__name__)

# snapshot key -> FRED series id
FRED_SERIES = {
    'fed_funds_rate': 'DFF',
    'junk_spread': 'BAMLH0A0HYM2',
    'yield_curve': 'T10Y2Y',
    'ted_spread': 'TEDRATE',
    'fed_reverse_repo': 'RRPONTSYD',
    'us_debt_to_gdp': 'GFDEGDQ188S',
    'vix': 'VIXCLS',
}

# snapshot key -> Yahoo ticker whose latest close is the reading
YAHOO_LEVELS = {
    'vxn': '^VXN',
    'rvx': '^RVX',
    'sox_index': '^SOX',
    'dxy_index': 'DX-Y.NYB',
}

QQQ_TICKER = 'QQQ'
NVDA_TICKER = 'NVDA'
VIX_TICKER = '^VIX'
VIX3M_TICKER = '^VIX3M'

# futures typically trade ~8% over spot in calm markets
VIX_CONTANGO_ESTIMATE = 0.08

# spot VIX -> left-tail probability
LTV_BANDS = ((25, 0.18), (20, 0.14), (15, 0.11))
LTV_FLOOR = 0.08


def ltv_from_vix(vix: float) -> float:
    for level, probability in LTV_BANDS:
        if vix > level:
            return probability
    return LTV_FLOOR


class FredClient:
    """
    Client for the FRED observations API

    Endpoint used:
    - /series/observations - latest observations for a series
    """

    BASE_URL = "https://api.stlouisfed.org/fred"

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key: FRED API key
            timeout: Per-request timeout in seconds
            max_retries: Attempts per request before giving up
            backoff_seconds: Base delay, doubled after each failed attempt
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        """Close the client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(self, endpoint: str, params: dict) -> Optional[dict]:
        """Make an API request with retry and exponential backoff"""
        params = {**params, 'api_key': self.api_key, 'file_type': 'json'}
        url = f"{self.BASE_URL}{endpoint}"

        for attempt in range(self.max_retries):
            try:
                client = await self._get_client()
                response = await client.get(url, params=params)

                if response.status_code == 200:
                    return response.json()
                elif response.status_code == 429 or response.status_code >= 500:
                    logger.warning(f"FRED request {endpoint} returned {response.status_code} (attempt {attempt + 1})")
                else:
                    # client errors will not improve on retry
                    logger.warning(f"FRED request failed: {response.status_code} {params.get('series_id')}")
                    return None

            except httpx.HTTPError as e:
                logger.warning(f"FRED request error (attempt {attempt + 1}): {e}")

            if attempt < self.max_retries - 1:
                await asyncio.sleep(self.backoff_seconds * (2 ** attempt))

        logger.error(f"FRED request {endpoint} gave up after {self.max_retries} attempts")
        return None

    async def get_latest(self, series_id: str) -> Optional[float]:
        """Latest non-missing observation for a series"""
        data = await self._request(
            "/series/observations",
            params={'series_id': series_id, 'sort_order': 'desc', 'limit': 10},
        )
        if not data:
            return None

        for obs in data.get('observations', []):
            value = obs.get('value')
            # FRED marks missing observations with "."
            if value in (None, '.', ''):
                continue
            try:
                return float(value)
            except ValueError:
                continue
        return None


class MarketDataClient:
    """Daily closes from Yahoo Finance; yfinance is blocking so calls run in a thread"""

    def __init__(self, period: str = "1y"):
        self.period = period

    def _download_closes(self, ticker: str, period: str) -> pd.Series:
        history = yf.Ticker(ticker).history(period=period, interval="1d", auto_adjust=False)
        if history is None or history.empty or 'Close' not in history:
            return pd.Series(dtype=float)
        return history['Close'].dropna()

    async def get_closes(self, ticker: str, period: Optional[str] = None) -> Optional[pd.Series]:
        try:
            closes = await asyncio.to_thread(self._download_closes, ticker, period or self.period)
        except Exception as e:
            logger.error(f"Yahoo download failed for {ticker}: {e}")
            return None
        if closes.empty:
            logger.warning(f"No Yahoo data returned for {ticker}")
            return None
        return closes

    async def get_latest(self, ticker: str) -> Optional[float]:
        closes = await self.get_closes(ticker, period="5d")
        if closes is None:
            return None
        return float(closes.iloc[-1])


def load_overrides(path: Optional[str]) -> dict[str, Any]:
    """Read manual indicator values from a JSON file; unknown keys are dropped"""
    if not path:
        return {}
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, ValueError) as e:
        logger.error(f"Failed to read snapshot overrides {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.error(f"Snapshot overrides {path} must be a JSON object")
        return {}

    unknown = [k for k in data if k not in INDICATORS]
    if unknown:
        logger.warning(f"Ignoring unknown override keys: {', '.join(sorted(unknown))}")
    return {k: v for k, v in data.items() if k in INDICATORS}


class SnapshotCollector:
    """
    Builds an IndicatorSnapshot from FRED, Yahoo Finance and manual overrides.

    Sources are fetched concurrently. Live values win over derived estimates,
    and manual overrides win over both.
    """

    def __init__(
        self,
        fred_api_key: Optional[str] = None,
        overrides: Optional[dict[str, Any]] = None,
        fred_client: Optional[FredClient] = None,
        market_client: Optional[MarketDataClient] = None,
    ):
        self.fred = fred_client or (FredClient(fred_api_key) if fred_api_key else None)
        self.market = market_client or MarketDataClient()
        self.overrides = dict(overrides or {})
        self._status: dict[str, dict] = {}

        if self.fred is None:
            logger.warning("FRED_API_KEY not set, macro indicators will use baseline defaults")

    async def close(self):
        if self.fred:
            await self.fred.close()

    async def collect(self) -> IndicatorSnapshot:
        raw = await self.collect_raw()
        return IndicatorSnapshot.from_raw(raw, timestamp=datetime.now(timezone.utc))

    async def collect_raw(self) -> dict[str, Any]:
        fred_values, market_values = await asyncio.gather(
            self._collect_fred(),
            self._collect_market(),
        )

        raw: dict[str, Any] = {}
        status: dict[str, dict] = {}

        # first source with a reading wins; Yahoo spot VIX only backs up FRED
        for values, source in ((fred_values, 'FRED'), (market_values, 'Yahoo Finance')):
            for key, value in values.items():
                if value is not None and key not in raw:
                    raw[key] = value
                    status[key] = {'live': True, 'source': source}

        for key, value, source in self._derived(raw):
            if key not in raw:
                raw[key] = value
                status[key] = {'live': True, 'source': source}

        for key, value in self.overrides.items():
            raw[key] = value
            status[key] = {'live': False, 'source': 'manual'}

        for key in INDICATORS:
            status.setdefault(key, {'live': False, 'source': 'baseline'})

        self._status = status
        live = sum(1 for s in status.values() if s['live'])
        logger.info(f"Collected snapshot: {live}/{len(INDICATORS)} live, {len(self.overrides)} manual")
        return raw

    def source_status(self) -> dict[str, dict]:
        """Where each indicator of the last collection came from"""
        return {k: dict(v) for k, v in self._status.items()}

    def _derived(self, raw: dict[str, Any]):
        vix = raw.get('vix')
        if vix is None:
            return
        yield 'vix_term_structure', round(vix * VIX_CONTANGO_ESTIMATE, 2), 'estimate (VIX)'
        yield 'ltv', ltv_from_vix(vix), 'estimate (VIX)'

    async def _collect_fred(self) -> dict[str, Optional[float]]:
        if self.fred is None:
            return {}
        keys = list(FRED_SERIES)
        results = await asyncio.gather(
            *(self.fred.get_latest(FRED_SERIES[k]) for k in keys),
            return_exceptions=True,
        )
        values = {}
        for key, result in zip(keys, results):
            if isinstance(result, Exception):
                logger.error(f"FRED fetch for {key} failed: {result}")
                continue
            values[key] = result
        return values

    async def _collect_market(self) -> dict[str, Any]:
        level_keys = list(YAHOO_LEVELS)
        tickers = [YAHOO_LEVELS[k] for k in level_keys]
        results = await asyncio.gather(
            self.market.get_closes(QQQ_TICKER),
            self.market.get_closes(NVDA_TICKER, period="3mo"),
            self.market.get_latest(VIX_TICKER),
            self.market.get_latest(VIX3M_TICKER),
            *(self.market.get_latest(t) for t in tickers),
            return_exceptions=True,
        )
        results = [None if isinstance(r, Exception) else r for r in results]
        qqq_closes, nvda_closes, spot_vix, vix3m, *levels = results

        values: dict[str, Any] = {}
        if qqq_closes is not None:
            values.update(compute_qqq_technicals(qqq_closes))
        if nvda_closes is not None:
            values['nvidia_momentum'] = momentum_score(nvda_closes)
        if spot_vix is not None:
            values['vix'] = spot_vix
            if vix3m is not None:
                values['vix_term_structure'] = round(vix3m - spot_vix, 2)
        for key, level in zip(level_keys, levels):
            values[key] = level
        return values
