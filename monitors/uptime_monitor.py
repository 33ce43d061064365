"""
Uptime Monitoring Module

Checks website availability with a single async HTTP request.
Any status in the 200-399 range counts as up; everything else, including
timeouts and connection failures, counts as down.
"""

import aiohttp
import asyncio
from datetime import datetime
import logging

from models import ReachabilityResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


def build_url(host: str) -> str:
    """Ensure the host has a scheme, preferring https"""
    host = host.strip()
    if not host.startswith(('http://', 'https://')):
        return f'https://{host}'
    return host


async def check_reachability(host: str, timeout: float = DEFAULT_TIMEOUT) -> ReachabilityResult:
    """
    Check whether a host answers an HTTP GET

    Never raises: every failure mode resolves to is_up=False.

    Args:
        host: Hostname or URL (scheme optional, defaults to https)
        timeout: Request timeout in seconds (default 10)

    Returns:
        ReachabilityResult
    """
    url = build_url(host)
    start_time = datetime.now()

    def elapsed() -> float:
        return round((datetime.now() - start_time).total_seconds(), 3)

    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=False
            ) as response:
                is_up = 200 <= response.status < 400
                if not is_up:
                    logger.warning(f"{url} answered with HTTP {response.status}")

                return ReachabilityResult(
                    url=url,
                    is_up=is_up,
                    status_code=response.status,
                    response_time=elapsed(),
                    error=None if is_up else f"HTTP {response.status}"
                )

    except asyncio.TimeoutError:
        logger.error(f"Uptime check timeout for {url}")
        return ReachabilityResult(url=url, is_up=False, response_time=elapsed(), error='Request timeout')

    except aiohttp.ClientConnectorError as e:
        logger.error(f"Connection error for {url}: {e}")
        return ReachabilityResult(url=url, is_up=False, response_time=elapsed(), error=f"Connection failed: {e}")

    except aiohttp.ClientError as e:
        logger.error(f"HTTP client error for {url}: {e}")
        return ReachabilityResult(url=url, is_up=False, response_time=elapsed(), error=f"HTTP error: {e}")

    except Exception as e:
        logger.error(f"Unexpected error checking uptime for {url}: {e}")
        return ReachabilityResult(url=url, is_up=False, response_time=elapsed(), error=f"Unexpected error: {e}")
