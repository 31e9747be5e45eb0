"""OAuth token refresh for third-party integrations.

``refresh-integration-tokens`` (event ``integrations/refresh-tokens``, payload
``{integrationId?, companyId?}``) and ``scheduled-token-refresh`` (every five
minutes) share one body: find active integrations with a refresh token that
expire within the refresh window (10 minutes), refresh each through its
provider, and persist the new tokens.

Per integration:

- provider whose tokens never expire (Slack), or token not yet expiring
  → success, ``updated=False``
- unknown provider, or no refresh token → item failure
- provider error → item failure
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from hris_jobs.core.errors import error_message
from hris_jobs.execution.context import StepContext
from hris_jobs.execution.models import BatchItemResult

REFRESH_CONCURRENCY = 5


def _parse_expiry(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def needs_refresh(expires_at: Any, now: datetime, window: timedelta) -> bool:
    expiry = _parse_expiry(expires_at)
    return expiry is None or expiry < now + window


async def refresh_integration(
    ctx: StepContext,
    integration: dict[str, Any],
    now: datetime,
    window: timedelta,
) -> BatchItemResult:
    integration_id = integration["id"]
    provider_name = integration.get("provider")
    provider = ctx.services.token_providers.get(provider_name)
    if provider is None:
        return BatchItemResult.fail(
            integration_id, f"Token refresh not supported for provider: {provider_name}"
        )
    if not provider.expires or not needs_refresh(integration.get("expires_at"), now, window):
        return BatchItemResult.ok(integration_id, updated=False)

    refresh_token = integration.get("refresh_token")
    if not refresh_token:
        return BatchItemResult.fail(integration_id, "No refresh token available")

    try:
        tokens = await provider.refresh(refresh_token)
    except Exception as e:
        return BatchItemResult.fail(integration_id, error_message(e) or "Failed to refresh token")

    await ctx.store.update_integration_tokens(
        integration_id,
        {
            "access_token": tokens["access_token"],
            "refresh_token": tokens.get("refresh_token") or refresh_token,
            "expires_at": tokens.get("expires_at"),
            "updated_at": now,
        },
    )
    ctx.logger.info("tokens.refreshed", integration_id=integration_id, provider=provider_name)
    return BatchItemResult.ok(integration_id, updated=True)


async def refresh_tokens(ctx: StepContext) -> dict[str, Any]:
    integration_id = ctx.payload.get("integrationId")
    company_id = ctx.payload.get("companyId")
    window = timedelta(minutes=ctx.settings.token_refresh_window_minutes)
    store = ctx.store

    async def find_integrations() -> list[dict[str, Any]]:
        now = ctx.services.now()
        if integration_id:
            integration = await store.get_integration(integration_id)
            return [integration] if integration else []
        return await store.list_expiring_integrations(now + window, company_id=company_id)

    integrations = await ctx.run("find-integrations", find_integrations)

    async def refresh_all() -> list[dict[str, Any]]:
        if integration_id and not integrations:
            return [BatchItemResult.fail(integration_id, "Integration not found").to_dict()]
        now = ctx.services.now()
        results = await ctx.services.limiter.for_each(
            integrations,
            REFRESH_CONCURRENCY,
            lambda i: refresh_integration(ctx, i, now, window),
            item_id=lambda i: i["id"],
        )
        return [r.to_dict() for r in results]

    results = await ctx.run("refresh-tokens", refresh_all)
    refreshed = sum(1 for r in results if r["success"] and r.get("updated"))
    failed = sum(1 for r in results if not r["success"])
    return {
        "success": True,
        "refreshed": refreshed,
        "failed": failed,
        "successCount": len(results) - failed,
        "failedCount": failed,
        "results": results,
    }
