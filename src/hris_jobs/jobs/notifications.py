"""Push notification job.

``send-notification`` (event ``notifications/send``, payload ``{userId, title,
body, data, companyId}``) pushes to every registered device of the user. A
user without devices is a successful no-op; tokens the push service reports
as invalid are removed from the store.
"""

from __future__ import annotations

from typing import Any

from hris_jobs.core.errors import TransientError, ValidationError
from hris_jobs.execution.context import StepContext
from hris_jobs.ports import PushNotification


async def send_notification(ctx: StepContext) -> dict[str, Any]:
    payload = ctx.payload
    user_id = payload.get("userId")
    if not user_id:
        raise ValidationError("userId is required")
    push = ctx.services.push
    if push is None:
        raise ValidationError("No push sender configured")

    async def deliver() -> dict[str, Any]:
        tokens = await ctx.store.list_device_tokens(user_id)
        if not tokens:
            return {"devices": 0, "delivered": 0}

        notification = PushNotification(
            title=payload.get("title") or "Notification",
            body=payload.get("body") or "",
            data={k: str(v) for k, v in (payload.get("data") or {}).items()},
        )
        result = await push.send(tokens, notification)
        if result.invalid_tokens:
            await ctx.store.remove_device_tokens(result.invalid_tokens)
        if result.success_count == 0:
            raise TransientError(f"Push delivery failed for all {len(tokens)} device(s)")
        return {"devices": len(tokens), "delivered": result.success_count}

    delivery = await ctx.run("send-push", deliver)
    return {"success": True, "userId": user_id, **delivery}
