"""
Replicate REST client for video generation.

Queue-style protocol:
  POST /models/{owner}/{name}/predictions   (or /predictions with a version)
       with `Prefer: wait` so short jobs return finished
  GET  urls.get until status is succeeded / failed / canceled

The overall wall-clock limit is enforced by the caller (VideoStage), so
polling here is unbounded.
"""

import os
import asyncio
import logging
from typing import Any, Optional

import httpx

from .. import config
from ..errors import BackendFailure, RateLimitedError
from .backends import DEFAULT_RETRY_AFTER, parse_retry_after

logger = logging.getLogger(__name__)

POLL_INTERVAL = float(os.getenv("REPLICATE_POLL_INTERVAL_S", "2"))
REQUEST_TIMEOUT = 60  # seconds per HTTP request
TERMINAL_STATUSES = {"succeeded", "failed", "canceled"}


def _raise_for_status(response: httpx.Response, model_id: str):
    if response.status_code < 400:
        return

    body = response.text[:500]
    if response.status_code == 429:
        header = response.headers.get("Retry-After", "")
        retry_after = int(header) if header.isdigit() else parse_retry_after(body) or DEFAULT_RETRY_AFTER
        raise RateLimitedError(
            f"{model_id}: rate limited by Replicate (HTTP 429), retry after {retry_after}s",
            service=model_id,
            retry_after=retry_after,
        )
    if response.status_code == 402:
        raise BackendFailure(
            f"{model_id}: Replicate account has insufficient credit. Add billing credit and retry.",
            model=model_id,
            kind=BackendFailure.PAYMENT_REQUIRED,
        )
    raise BackendFailure(
        f"{model_id}: Replicate HTTP {response.status_code}: {body}",
        model=model_id,
        kind=BackendFailure.REMOTE_ERROR,
    )


class ReplicateClient:
    def __init__(
        self,
        api_token: Optional[str] = None,
        api_base: Optional[str] = None,
        poll_interval: float = POLL_INTERVAL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_token = api_token if api_token is not None else config.REPLICATE_API_TOKEN
        self.api_base = (api_base or config.REPLICATE_API_BASE).rstrip("/")
        self.poll_interval = poll_interval
        self._transport = transport

    def _headers(self) -> dict:
        if not self.api_token:
            raise RuntimeError("REPLICATE_API_TOKEN is not set")
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    def _create_request(self, model_id: str, input_data: dict) -> tuple[str, dict]:
        # "owner/name:version" pins a version; "owner/name" runs the latest
        owner_name, _, version = model_id.partition(":")
        if version:
            return f"{self.api_base}/predictions", {"version": version, "input": input_data}
        return f"{self.api_base}/models/{owner_name}/predictions", {"input": input_data}

    async def run(self, model_id: str, input_data: dict) -> Any:
        """Run a prediction to completion and return its raw `output`."""
        url, body = self._create_request(model_id, input_data)
        headers = self._headers()

        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=self._transport) as client:
            logger.info(f"Replicate request to {url}")
            response = await client.post(url, headers={**headers, "Prefer": "wait"}, json=body)
            _raise_for_status(response, model_id)
            prediction = response.json()

            poll_count = 0
            while prediction.get("status") not in TERMINAL_STATUSES:
                await asyncio.sleep(self.poll_interval)
                poll_count += 1
                get_url = (prediction.get("urls") or {}).get("get") or f"{self.api_base}/predictions/{prediction.get('id')}"
                response = await client.get(get_url, headers=headers)
                _raise_for_status(response, model_id)
                prediction = response.json()
                logger.debug(f"{model_id} poll #{poll_count}: status={prediction.get('status')}")

        status = prediction.get("status")
        if status != "succeeded":
            error = prediction.get("error") or "no error message"
            raise BackendFailure(f"{model_id}: prediction {status}: {error}", model=model_id)

        return prediction.get("output")
