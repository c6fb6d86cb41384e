"""Concurrency helpers for controlling background thread usage."""

from __future__ import annotations

from typing import Any, Callable

import anyio

from storefront.core.config import settings

_geoip_sem = anyio.Semaphore(settings.GEOIP_MAX_CONCURRENCY)
_security_sem = anyio.Semaphore(settings.SECURITY_MAX_CONCURRENCY)


async def run_in_thread_geoip(func: Callable[..., Any], *args: Any):
    """Run a blocking outbound lookup in a worker thread with bounded concurrency."""

    async with _geoip_sem:
        return await anyio.to_thread.run_sync(func, *args)


async def run_in_thread_security(func: Callable[..., Any], *args: Any):
    async with _security_sem:
        return await anyio.to_thread.run_sync(func, *args)
