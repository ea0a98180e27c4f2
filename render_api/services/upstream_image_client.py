"""
StepFun-compatible image generation client (text-to-image and image-to-image)
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

from render_api.core.errors import (
    ConfigError,
    UpstreamEmptyResponseError,
    UpstreamRateLimitedError,
    UpstreamTimeoutError,
    UpstreamTransientError,
    classify_upstream_status,
)

logger = logging.getLogger(__name__)

B64_FIELDS = ("b64_json", "image", "base64", "b64")
URL_FIELDS = ("url", "image_url")


@dataclass
class UpstreamImage:
    url: Optional[str] = None
    b64: Optional[str] = None
    finish_reason: Optional[str] = None
    seed: Optional[int] = None

    @property
    def has_image(self) -> bool:
        return bool(self.url or self.b64)


@dataclass
class UpstreamImageResponse:
    images: List[UpstreamImage] = field(default_factory=list)

    @property
    def first(self) -> UpstreamImage:
        return self.images[0] if self.images else UpstreamImage()

    @property
    def has_image(self) -> bool:
        return self.first.has_image


def parse_image_response(data: Any) -> UpstreamImageResponse:
    """Accept the field-name variants seen across upstream deployments."""
    if not isinstance(data, dict):
        return UpstreamImageResponse()
    items = data.get("data")
    if not isinstance(items, list):
        items = []
    top_seed = data.get("seed")

    images = []
    for item in items:
        if not isinstance(item, dict):
            continue
        b64 = next((item[k] for k in B64_FIELDS if isinstance(item.get(k), str) and item[k]), None)
        url = next((item[k] for k in URL_FIELDS if isinstance(item.get(k), str) and item[k]), None)
        seed = item.get("seed", top_seed)
        images.append(
            UpstreamImage(
                url=url,
                b64=b64,
                finish_reason=item.get("finish_reason"),
                seed=seed if isinstance(seed, int) else None,
            )
        )
    return UpstreamImageResponse(images=images)


class UpstreamImageClient:
    """Thin transport over the upstream images API"""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.stepfun.com/v1",
        model: str = "step-1x-medium",
        timeout_seconds: float = 180.0,
        rate_limit_backoff_seconds: float = 0.9,
    ):
        self.api_key = api_key or ""
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.rate_limit_backoff_seconds = rate_limit_backoff_seconds
        self.session: Optional[aiohttp.ClientSession] = None
        self.usage_stats = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "rate_limited": 0,
            "total_processing_time": 0.0,
            "last_reset": datetime.now(),
        }

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self.session = aiohttp.ClientSession(timeout=timeout)
        return self.session

    async def _post(self, endpoint: str, payload: Dict[str, Any], context: str) -> Dict[str, Any]:
        """POST with a single backoff-and-retry on 429; other failures raise immediately."""
        if not self.is_configured:
            raise ConfigError("Image API key is not configured (STEPFUN_API_KEY)", error_code="MISSING_KEY")

        session = await self._get_session()
        url = f"{self.base_url}/{endpoint}"
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}
        body = {k: v for k, v in payload.items() if v is not None}

        for attempt in range(2):
            start_time = time.time()
            self.usage_stats["total_requests"] += 1
            try:
                async with session.post(url, json=body, headers=headers) as response:
                    text = await response.text()
                    status = response.status
            except asyncio.TimeoutError:
                self.usage_stats["failed_requests"] += 1
                logger.error(f"{context} timed out after {time.time() - start_time:.1f}s")
                raise UpstreamTimeoutError(f"{context} timed out")
            except aiohttp.ClientError as e:
                self.usage_stats["failed_requests"] += 1
                logger.error(f"{context} connection error: {e}")
                raise UpstreamTransientError(f"{context} connection error: {e}")

            processing_time = time.time() - start_time
            self.usage_stats["total_processing_time"] += processing_time

            if 200 <= status < 300:
                try:
                    data = json.loads(text) if text else {}
                except ValueError:
                    self.usage_stats["failed_requests"] += 1
                    raise UpstreamEmptyResponseError(
                        f"{context} returned a non-JSON body", upstream_status=status, upstream_body=text
                    )
                self.usage_stats["successful_requests"] += 1
                logger.info(f"{context} succeeded - Time: {processing_time:.2f}s")
                return data

            self.usage_stats["failed_requests"] += 1
            if status == 429:
                self.usage_stats["rate_limited"] += 1
                if attempt == 0:
                    logger.warning(f"{context} rate limited (429), retrying in {self.rate_limit_backoff_seconds}s")
                    await asyncio.sleep(self.rate_limit_backoff_seconds)
                    continue
                raise UpstreamRateLimitedError(
                    f"{context} is rate limited, retry later", upstream_status=status, upstream_body=text
                )

            logger.error(f"{context} error {status}: {text[:300]}")
            raise classify_upstream_status(status, text, context)

        # Unreachable: the loop either returns or raises
        raise UpstreamRateLimitedError(f"{context} is rate limited, retry later", upstream_status=429)

    async def text_to_image(
        self,
        prompt: str,
        size: str,
        n: int = 1,
        response_format: str = "b64_json",
        seed: Optional[int] = None,
        steps: Optional[int] = None,
        cfg_scale: Optional[float] = None,
        model: Optional[str] = None,
    ) -> UpstreamImageResponse:
        payload = {
            "model": model or self.model,
            "prompt": prompt,
            "size": size,
            "n": n,
            "response_format": response_format,
            "seed": seed,
            "steps": steps,
            "cfg_scale": cfg_scale,
        }
        data = await self._post("images/generations", payload, "Text-to-image")
        return parse_image_response(data)

    async def image_to_image(
        self,
        prompt: str,
        source_image: str,
        source_weight: float,
        size: str,
        n: int = 1,
        response_format: str = "b64_json",
        seed: Optional[int] = None,
        steps: Optional[int] = None,
        cfg_scale: Optional[float] = None,
        model: Optional[str] = None,
    ) -> UpstreamImageResponse:
        """source_image is either a fetchable URL or a base64 data URL."""
        payload = {
            "model": model or self.model,
            "prompt": prompt,
            "source_url": source_image,
            "source_weight": source_weight,
            "size": size,
            "n": n,
            "response_format": response_format,
            "seed": seed,
            "steps": steps,
            "cfg_scale": cfg_scale,
        }
        data = await self._post("images/image2image", payload, "Image-to-image")
        return parse_image_response(data)

    async def close(self):
        """Close HTTP session"""
        if self.session:
            await self.session.close()
            self.session = None
