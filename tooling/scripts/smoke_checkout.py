#!/usr/bin/env python3
"""Smoke test for the checkout session → payment webhook flow.

Usage (HTTP):
    python tooling/scripts/smoke_checkout.py --base-url http://localhost:8000 \
        --api-key <CHECKOUT_API_KEY> --admin-api-key <INVENTORY_ADMIN_API_KEY>

Usage (in-process, no network sockets required):
    python tooling/scripts/smoke_checkout.py --in-process

The script checks:
1. API health (`/healthz`)
2. Gift code stock (`POST /api/v1/admin/gift-codes/bulk`, in-process mode only)
3. Checkout session creation (`POST /api/v1/checkout-sessions`)
4. Payment confirmation (`POST /api/v1/webhooks/payment-confirmed`)
5. Inventory observability snapshot (`/api/v1/admin/gift-codes/observability`)
"""

from __future__ import annotations

import argparse
import asyncio
import os
import secrets
import string
import sys
from pathlib import Path
from typing import Any

import httpx
from httpx import ASGITransport, Response

_SMOKE_CART_TOTAL_CENTS = 1811
_SMOKE_BALANCE_CENTS = 500


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="GiftBridge checkout smoke test")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Base URL of the FastAPI service (ignored with --in-process)",
    )
    parser.add_argument(
        "--api-key",
        help="Value for X-API-Key on checkout and webhook endpoints (optional in --in-process mode).",
    )
    parser.add_argument(
        "--admin-api-key",
        help="Value for X-API-Key on inventory admin endpoints (optional in --in-process mode).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Request timeout in seconds",
    )
    parser.add_argument(
        "--in-process",
        action="store_true",
        help="Run requests directly against the ASGI app without binding network sockets.",
    )
    return parser.parse_args()


async def _get_json(client: httpx.AsyncClient, path: str, headers: dict[str, str] | None = None) -> Any:
    response: Response = await client.get(path, headers=headers)
    response.raise_for_status()
    return response.json()


async def _post_json(
    client: httpx.AsyncClient,
    path: str,
    payload: dict[str, Any],
    headers: dict[str, str],
) -> dict[str, Any]:
    response: Response = await client.post(path, json=payload, headers=headers)
    response.raise_for_status()
    return response.json()


def _random_code(prefix: str = "AMAZON-GIFT-CODE-", length: int = 6) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return prefix + "".join(secrets.choice(alphabet) for _ in range(length))


async def _stock_inventory(client: httpx.AsyncClient, admin_key: str) -> None:
    for denomination in (500, 1000):
        await _post_json(
            client,
            "/api/v1/admin/gift-codes/bulk",
            {"codes": [_random_code() for _ in range(2)], "denomination": denomination},
            headers={"X-API-Key": admin_key},
        )


async def _run_checks(
    client: httpx.AsyncClient,
    api_key: str,
    admin_key: str,
    *,
    stock: bool,
) -> dict[str, Any]:
    health = await _get_json(client, "/healthz")
    if health.get("status") != "ok":
        raise RuntimeError(f"Unexpected health response: {health}")

    if stock:
        await _stock_inventory(client, admin_key)

    checkout_session = await _post_json(
        client,
        "/api/v1/checkout-sessions",
        {
            "amazonUrl": "https://www.amazon.com/gp/cart/view.html",
            "cartTotalCents": _SMOKE_CART_TOTAL_CENTS,
            "currentBalanceCents": _SMOKE_BALANCE_CENTS,
            "metadata": {"source": "smoke-test"},
        },
        headers={"X-API-Key": api_key},
    )
    expected_top_up = _SMOKE_CART_TOTAL_CENTS - _SMOKE_BALANCE_CENTS
    if checkout_session.get("topUpAmountCents") != expected_top_up:
        raise RuntimeError(f"Unexpected top-up amount: {checkout_session}")

    confirmation = await _post_json(
        client,
        "/api/v1/webhooks/payment-confirmed",
        {
            "sessionId": checkout_session["sessionId"],
            "transactionHash": f"0xsmoke{secrets.token_hex(8)}",
            "amount": expected_top_up,
        },
        headers={"X-API-Key": api_key},
    )
    if not confirmation.get("success") or confirmation.get("allocatedAmount", 0) < expected_top_up:
        raise RuntimeError(f"Payment confirmation did not cover the top-up: {confirmation}")

    observability = await _get_json(
        client,
        "/api/v1/admin/gift-codes/observability",
        headers={"X-API-Key": admin_key},
    )
    allocation_totals = observability.get("allocation", {}).get("totals", {})
    if not allocation_totals.get("succeeded"):
        raise RuntimeError(f"Inventory observability missing allocation totals: {observability}")

    return confirmation


async def run_http(base_url: str, timeout: float, api_key: str, admin_key: str) -> dict[str, Any]:
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
        return await _run_checks(client, api_key, admin_key, stock=False)


async def run_in_process(timeout: float, api_key: str, admin_key: str) -> dict[str, Any]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from giftbridge_api.app import create_app  # type: ignore import-position
    from giftbridge_api.core.settings import settings  # type: ignore import-position
    from giftbridge_api.db.base import Base  # type: ignore import-position
    from giftbridge_api.db.session import engine  # type: ignore import-position

    settings.checkout_api_key = api_key
    settings.inventory_admin_api_key = admin_key

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app = create_app()
    lifespan = app.router.lifespan_context(app)
    await lifespan.__aenter__()
    try:
        transport = ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver", timeout=timeout) as client:
            return await _run_checks(client, api_key, admin_key, stock=True)
    finally:
        await lifespan.__aexit__(None, None, None)


def resolve_key(explicit: str | None, env_name: str, fallback: str, in_process: bool) -> str:
    if explicit:
        return explicit
    env_key = os.environ.get(env_name)
    if env_key:
        return env_key
    if in_process:
        return fallback
    raise SystemExit(f"Missing API key or {env_name} environment variable for HTTP smoke test.")


def main() -> int:
    args = parse_args()
    api_key = resolve_key(args.api_key, "CHECKOUT_API_KEY", "giftbridge-smoke-key", args.in_process)
    admin_key = resolve_key(args.admin_api_key, "INVENTORY_ADMIN_API_KEY", "giftbridge-smoke-admin", args.in_process)

    if args.in_process:
        confirmation = asyncio.run(run_in_process(args.timeout, api_key, admin_key))
    else:
        confirmation = asyncio.run(run_http(args.base_url, args.timeout, api_key, admin_key))

    codes = confirmation.get("allocatedCodes") or []
    print(
        "Checkout smoke test passed ✅ "
        f"Session {confirmation.get('sessionId')} funded with {len(codes)} gift code(s)"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
