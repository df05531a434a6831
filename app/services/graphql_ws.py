import asyncio
import json
import logging
import uuid
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import WebSocketException

from app.exceptions.custom import PricingTransportError
from app.schemas.pricing import BatchPricingRequest
from app.services.pricing_channel import (
    BATCH_STREAM_FIELD,
    BATCH_STREAM_SUBSCRIPTION,
    CompleteCallback,
    ErrorCallback,
    ResultCallback,
)

logger = logging.getLogger(__name__)

GRAPHQL_TRANSPORT_WS = "graphql-transport-ws"


def _frame(kind: str, **fields: Any) -> str:
    return json.dumps({"type": kind, **fields})


def _error_message(payload: Any) -> str:
    if isinstance(payload, list) and payload:
        return "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in payload)
    return str(payload) if payload else "GraphQL subscription error"


class WebSocketSubscription:
    def __init__(self, subscription_id: str) -> None:
        self.subscription_id = subscription_id
        self.closed = False
        self._task: asyncio.Task | None = None

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def finish(self) -> bool:
        """Mark the subscription closed. False if it already was."""
        if self.closed:
            return False
        self.closed = True
        return True

    def unsubscribe(self) -> None:
        if not self.finish():
            return
        if self._task is not None and not self._task.done():
            if self._task is asyncio.current_task():
                # Called from a callback inside the reader; cancel once it yields.
                self._task.get_loop().call_soon(self._task.cancel)
            else:
                self._task.cancel()
        logger.debug("Released pricing subscription %s", self.subscription_id)


class GraphQLWsPricingChannel:
    """Batch pricing stream over the ``graphql-transport-ws`` protocol.

    Every subscription owns its own socket, so releasing it always closes
    the underlying connection.
    """

    def __init__(
        self,
        url: str,
        auth_token: str = "",
        ack_timeout: float = 10.0,
        open_timeout: float = 10.0,
    ):
        self._url = url
        self._auth_token = auth_token
        self._ack_timeout = ack_timeout
        self._open_timeout = open_timeout

    def subscribe(
        self,
        request: BatchPricingRequest,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_complete: CompleteCallback,
    ) -> WebSocketSubscription:
        subscription = WebSocketSubscription(uuid.uuid4().hex[:12])
        task = asyncio.get_running_loop().create_task(
            self._run(subscription, request, on_result, on_error, on_complete)
        )
        subscription.attach(task)
        logger.info(
            "Opened pricing stream %s (%d inputs, requestedDays=%s)",
            subscription.subscription_id,
            len(request.inputs),
            request.requestedDays,
        )
        return subscription

    def _init_payload(self) -> dict[str, Any]:
        if not self._auth_token:
            return {}
        return {"authorization": f"Bearer {self._auth_token}"}

    async def _handshake(self, ws: ClientConnection) -> None:
        await ws.send(_frame("connection_init", payload=self._init_payload()))
        raw = await asyncio.wait_for(ws.recv(), timeout=self._ack_timeout)
        message = json.loads(raw)
        if message.get("type") != "connection_ack":
            raise PricingTransportError(
                f"Expected connection_ack, got {message.get('type')!r}"
            )

    async def _run(
        self,
        subscription: WebSocketSubscription,
        request: BatchPricingRequest,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_complete: CompleteCallback,
    ) -> None:
        sub_id = subscription.subscription_id
        try:
            async with connect(
                self._url,
                subprotocols=[GRAPHQL_TRANSPORT_WS],
                open_timeout=self._open_timeout,
                ping_interval=20,
                ping_timeout=10,
                close_timeout=5,
            ) as ws:
                await self._handshake(ws)
                await ws.send(
                    _frame(
                        "subscribe",
                        id=sub_id,
                        payload={
                            "query": BATCH_STREAM_SUBSCRIPTION,
                            "operationName": "CalculatePricesBatchStream",
                            "variables": request.variables(),
                        },
                    )
                )
                try:
                    finished = await self._read(ws, subscription, on_result, on_error, on_complete)
                except asyncio.CancelledError:
                    try:
                        await ws.send(_frame("complete", id=sub_id))
                    except WebSocketException:
                        pass
                    raise
                if not finished and subscription.finish():
                    on_error(PricingTransportError("Pricing stream closed unexpectedly"))
        except asyncio.CancelledError:
            raise
        except PricingTransportError as exc:
            logger.error("Pricing stream %s failed: %s", sub_id, exc.message)
            if subscription.finish():
                on_error(exc)
        except (OSError, TimeoutError, WebSocketException, json.JSONDecodeError) as exc:
            logger.error("Pricing stream %s transport failure: %s", sub_id, exc)
            if subscription.finish():
                on_error(PricingTransportError(str(exc) or type(exc).__name__))
        except Exception as exc:
            logger.exception("Pricing stream %s crashed", sub_id)
            if subscription.finish():
                on_error(PricingTransportError(f"Pricing stream failed: {exc!r}"))
        finally:
            subscription.closed = True

    async def _read(
        self,
        ws: ClientConnection,
        subscription: WebSocketSubscription,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_complete: CompleteCallback,
    ) -> bool:
        """Pump frames until the operation ends.

        Returns True when the operation ended with ``complete``, ``error``
        or a local unsubscribe, False when the socket closed underneath it.
        """
        async for raw in ws:
            if subscription.closed:
                return True
            message = json.loads(raw)
            if not isinstance(message, dict):
                logger.debug("Ignoring non-object frame on %s", subscription.subscription_id)
                continue
            kind = message.get("type")

            if kind == "ping":
                await ws.send(_frame("pong"))
                continue
            if kind == "pong" or message.get("id") != subscription.subscription_id:
                continue

            if kind == "next":
                payload = message.get("payload")
                if not isinstance(payload, dict):
                    on_result(None)
                    continue
                if payload.get("errors"):
                    logger.warning(
                        "Pricing result carried errors: %s",
                        _error_message(payload["errors"]),
                    )
                data = payload.get("data")
                on_result(data.get(BATCH_STREAM_FIELD) if isinstance(data, dict) else None)
            elif kind == "error":
                if subscription.finish():
                    on_error(PricingTransportError(_error_message(message.get("payload"))))
                return True
            elif kind == "complete":
                logger.info("Pricing stream %s completed", subscription.subscription_id)
                if subscription.finish():
                    on_complete()
                return True
        return subscription.closed
