# dbproxy/gateway/pipeline.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi.responses import JSONResponse

from dbproxy.config.policy import PolicyConfig
from dbproxy.config.settings import Settings, get_settings
from dbproxy.errors import GatewayError, InternalError
from dbproxy.gateway import response
from dbproxy.gateway.decoder import decode_request, parse_body
from dbproxy.gateway.executor import Executor, StoreFactory
from dbproxy.gateway.policy import Deny, PolicyEngine

logger = logging.getLogger("db.proxy")


class Gateway:
    """Decoder -> policy -> query/executor -> envelope, short-circuiting on failure."""

    def __init__(
        self,
        policy: PolicyConfig,
        *,
        store_factory: Optional[StoreFactory] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.engine = PolicyEngine(policy)
        self.executor = Executor(store_factory, timeout_s=self.settings.STORE_TIMEOUT_S)

    async def handle(self, raw_body: bytes | str) -> JSONResponse:
        try:
            req = decode_request(parse_body(raw_body))
            decision = self.engine.evaluate(req)
            if isinstance(decision, Deny):
                logger.warning(
                    "db.proxy",
                    extra={
                        "event": {
                            "action": "denied",
                            "table": req.table,
                            "operation": req.operation,
                            "reason": decision.reason,
                        }
                    },
                )
                raise decision.to_error()
            data = await self.executor.execute(decision)
        except GatewayError as e:
            if e.status >= 500:
                logger.error("db.proxy internal error: %s", e.message)
            return response.error(e, self.settings)
        except Exception as e:  # noqa: BLE001
            logger.exception("db.proxy unexpected failure: %s", e)
            return response.error(InternalError(str(e)), self.settings)
        return response.ok(data, self.settings)
