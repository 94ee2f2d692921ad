# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""RabbitMQ listener.

Consumes one existing queue (named by ``RABBITMQ_TOPIC``) with automatic
acknowledgement and hands each body to the dispatcher. Deliveries are
buffered in a bounded :class:`asyncio.Queue` and processed by a single
worker task, one at a time, in arrival order.

Messages are acked by the broker at delivery time, independent of whether
the mail command succeeds: delivery is at-most-once and a failed dispatch
loses the message.

Example:
    Running the listener until interrupted::

        listener = QueueListener(BrokerConfig.from_env(), MailDispatcher(load_settings()))
        await listener.run()
"""

from __future__ import annotations

import asyncio
import logging

import aio_pika
from aio_pika.abc import AbstractConnection, AbstractIncomingMessage, AbstractQueue
from aio_pika.exceptions import AMQPException

from .config import BrokerConfig
from .dispatcher import MailDispatcher
from .errors import BrokerConnectionError
from .logger import get_logger

DEFAULT_MAX_PENDING = 100


class QueueListener:
    """Single-worker consumer bridging a RabbitMQ queue to the dispatcher."""

    def __init__(
        self,
        broker: BrokerConfig,
        dispatcher: MailDispatcher,
        logger: logging.Logger | None = None,
        max_pending: int = DEFAULT_MAX_PENDING,
    ):
        """Prepare the listener without touching the network.

        Args:
            broker: Connection parameters and queue name.
            dispatcher: Receives every delivered body.
            logger: Custom logger instance. If None, uses the package logger.
            max_pending: Deliveries buffered ahead of the worker before the
                broker callback starts waiting.
        """
        self.broker = broker
        self.dispatcher = dispatcher
        self.logger = logger or get_logger("claptrap_listen.consumer")
        self._deliveries: asyncio.Queue[bytes] = asyncio.Queue(maxsize=max(1, int(max_pending)))
        self._done = asyncio.Event()
        self._stopping = False
        self._connection: AbstractConnection | None = None
        self._queue: AbstractQueue | None = None
        self._consumer_tag: str | None = None
        self._task_worker: asyncio.Task | None = None
        self._worker_idle = asyncio.Event()
        self._connection_error: BaseException | None = None

    async def start(self) -> None:
        """Connect, subscribe with auto-ack and start the worker.

        Raises:
            BrokerConnectionError: If connecting, opening the channel or
                registering the consumer fails.
        """
        self.logger.info("Connecting to RabbitMQ at %s", self.broker.redacted())
        try:
            self._connection = await aio_pika.connect(
                host=self.broker.host,
                port=self.broker.port,
                login=self.broker.username,
                password=self.broker.password,
                virtualhost=self.broker.virtual_host,
            )
        except (AMQPException, OSError, asyncio.TimeoutError) as exc:
            raise BrokerConnectionError(f"Failed to connect to RabbitMQ: {exc}") from exc

        self._connection.close_callbacks.add(self._on_connection_closed)

        try:
            channel = await self._connection.channel()
        except (AMQPException, OSError) as exc:
            self._stopping = True
            await self._close_connection()
            raise BrokerConnectionError(f"Failed to open a channel: {exc}") from exc

        self._task_worker = asyncio.create_task(self._worker_loop(), name="queue-dispatch-worker")
        try:
            self._queue = await channel.get_queue(self.broker.topic, ensure=True)
            self._consumer_tag = await self._queue.consume(
                self._on_message,
                no_ack=True,
                exclusive=False,
            )
        except (AMQPException, OSError) as exc:
            await self.stop()
            raise BrokerConnectionError(f"Failed to register a consumer: {exc}") from exc
        self.logger.debug("Consuming queue %s with tag %s", self.broker.topic, self._consumer_tag)

    async def run(self) -> None:
        """Consume until :meth:`request_stop` is called or the connection drops.

        Raises:
            BrokerConnectionError: On startup failure or when the broker
                closes the connection unexpectedly.
        """
        await self.start()
        self.logger.info("Waiting for messages. To exit press CTRL+C")
        await self._done.wait()
        await self.stop()
        if self._connection_error is not None:
            raise BrokerConnectionError(f"Lost connection to RabbitMQ: {self._connection_error}")

    def request_stop(self) -> None:
        """Ask :meth:`run` to shut down. Safe to call from a signal handler."""
        self._done.set()

    async def stop(self) -> None:
        """Cancel the consumer, let the worker finish its current message and close.

        Deliveries still buffered are dropped (they were already acked).
        Calling ``stop`` more than once is harmless.
        """
        if self._stopping:
            return
        self._stopping = True

        if self._queue is not None and self._consumer_tag is not None:
            try:
                await self._queue.cancel(self._consumer_tag)
            except (AMQPException, OSError) as exc:
                self.logger.warning("Failed to cancel consumer %s: %s", self._consumer_tag, exc)

        if self._task_worker is not None:
            # idle in get(): cancel; busy: it exits after the current dispatch
            if self._worker_idle.is_set():
                self._task_worker.cancel()
            await asyncio.gather(self._task_worker, return_exceptions=True)
            self._task_worker = None

        # callbacks woken by the first drain land in the freed slots
        dropped = self._drain_deliveries()
        await asyncio.sleep(0)
        dropped += self._drain_deliveries()
        if dropped:
            self.logger.warning("Dropped %d undelivered message(s) on shutdown", dropped)

        await self._close_connection()
        self._done.set()

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        # already acked by the broker (no_ack=True)
        if self._stopping:
            return
        await self._deliveries.put(message.body)

    async def _worker_loop(self) -> None:
        self.logger.debug("Queue worker started")
        while not self._stopping:
            self._worker_idle.set()
            body = await self._deliveries.get()
            self._worker_idle.clear()
            try:
                await self.dispatcher.dispatch(body, "rabbitmq")
            except Exception as exc:
                self.logger.exception("Unhandled error while dispatching a queue message: %s", exc)
            finally:
                self._deliveries.task_done()
        self.logger.debug("Queue worker stopped")

    def _drain_deliveries(self) -> int:
        dropped = 0
        while not self._deliveries.empty():
            self._deliveries.get_nowait()
            self._deliveries.task_done()
            dropped += 1
        return dropped

    def _on_connection_closed(self, _sender, exc: BaseException | None = None) -> None:
        if self._stopping:
            return
        self._connection_error = exc or ConnectionError("connection closed by broker")
        self.logger.error("RabbitMQ connection closed: %s", self._connection_error)
        self._done.set()

    async def _close_connection(self) -> None:
        if self._connection is None or self._connection.is_closed:
            return
        try:
            await self._connection.close()
        except (AMQPException, OSError) as exc:
            self.logger.warning("Error while closing RabbitMQ connection: %s", exc)
