"""Request-scoped token sinks.

The streaming transport registers a sink under the turn's request ID before
it starts the pipeline; the model invoker pushes tokens through a forwarder
that looks the sink up on every token. Neither side knows the other's
transport. Entries are keyed per request, so concurrent turns never share
an entry, and all access happens on the event loop.
"""

import inspect
import logging

from branchchat.services.model_invoker import TokenSink

logger = logging.getLogger(__name__)


class TokenCallbackRegistry:
    """Maps request IDs to token sinks."""

    def __init__(self):
        self._sinks: dict[str, TokenSink] = {}

    def register(self, request_id: str, sink: TokenSink):
        """Store a sink, replacing any sink already registered for the request."""
        self._sinks[request_id] = sink
        logger.debug(f"Registered token sink for request {request_id}")

    def unregister(self, request_id: str):
        """Remove a sink. Safe to call when none is registered."""
        if self._sinks.pop(request_id, None) is not None:
            logger.debug(f"Unregistered token sink for request {request_id}")

    def get(self, request_id: str | None) -> TokenSink | None:
        if not request_id:
            return None
        return self._sinks.get(request_id)

    def forwarder(self, request_id: str) -> TokenSink:
        """A sink that delivers to whatever is registered at the time of each token.

        Tokens produced while nothing is registered are dropped.
        """

        async def forward(token: str):
            sink = self.get(request_id)
            if sink is None:
                return
            result = sink(token)
            if inspect.isawaitable(result):
                await result

        return forward

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._sinks

    def __len__(self) -> int:
        return len(self._sinks)
