"""Cache warming job (every 30 minutes).

Lists the active companies, then warms each company's frequently read keys
in its own checkpointed step, so a retry after a failure only re-warms the
companies that had not finished.
"""

from __future__ import annotations

from typing import Any

from hris_jobs.core.errors import ValidationError
from hris_jobs.execution.context import StepContext


async def warm_caches(ctx: StepContext) -> dict[str, Any]:
    warmer = ctx.services.cache
    if warmer is None:
        raise ValidationError("No cache warmer configured")

    companies = await ctx.run("list-active-companies", ctx.store.list_active_companies)
    if not companies:
        ctx.logger.info("cache.nothing_to_warm")

    for company in companies:
        await ctx.run(f"warm-company-{company['id']}", warmer.warm_company, company["id"])

    return {"success": True, "companiesWarmed": len(companies)}
