"""self-healing-auto: drift assessment and regeneration runs."""

import logging

from ..queue import JobContext, names
from ..schemas.messages import SelfHealingMessage
from .base import StageHandler

logger = logging.getLogger(__name__)


class SelfHealingHandler(StageHandler):
    queue_name = names.SELF_HEALING

    async def handle(self, ctx: JobContext) -> None:
        msg = SelfHealingMessage.parse_payload(ctx.payload)
        result = await self.container.self_healing.run(msg)
        logger.info(
            f"Self-healing {msg.action.value} for {msg.repository_id} finished",
            extra={
                "queue": ctx.queue_name,
                "job_id": ctx.job_id,
                "regenerated": len(result.regenerated),
                "pull_request": result.pull_request_url,
            },
        )
