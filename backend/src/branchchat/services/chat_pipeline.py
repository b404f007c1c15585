"""Turn pipeline: one user message in, one persisted assistant reply out.

Stages run strictly in order over a shared TurnContext:

1. validate         - input, idempotent replay, conversation/branch/model
2. usage            - daily quota for free-plan users
3. load_history     - message path, compaction, token trimming
4. check_input      - fast gate + moderation on the user's text
5. invoke_model     - provider call with retry/fallback, tokens streamed
6. moderate_output  - fast gate + moderation on the generated text
7. persist          - idempotent writes and usage counter
8. title            - background title for new conversations

Any stage may raise a ChatError, which stops the turn. Anything else is
logged and surfaced as Internal.
"""

import logging

from branchchat.errors import ChatError, Internal
from branchchat.models import TurnRequest, TurnResult
from branchchat.services.history import HistoryBuilder, trim_history_to_token_limit
from branchchat.services.model_invoker import ModelInvoker, TokenSink
from branchchat.services.moderation import SafetyFilter
from branchchat.services.persistence import PersistenceLayer
from branchchat.services.summarizer import Summarizer
from branchchat.services.title_generator import TitleGenerator
from branchchat.services.token_registry import TokenCallbackRegistry
from branchchat.services.turn_context import TurnContext
from branchchat.services.usage_gate import UsageGate
from branchchat.services.validator import Validator

logger = logging.getLogger(__name__)


class ChatPipeline:
    """Runs turns. Collaborators are injected so each can be replaced in tests."""

    def __init__(
        self,
        db,
        registry: TokenCallbackRegistry | None = None,
        invoker: ModelInvoker | None = None,
        safety: SafetyFilter | None = None,
        summarizer: Summarizer | None = None,
        title_generator: TitleGenerator | None = None,
    ):
        self.db = db
        self.registry = registry if registry is not None else TokenCallbackRegistry()
        self.validator = Validator(db)
        self.usage_gate = UsageGate(db)
        self.history_builder = HistoryBuilder(db, summarizer)
        self.safety = safety or SafetyFilter()
        self.invoker = invoker or ModelInvoker()
        self.persistence = PersistenceLayer(db)
        self.title_generator = title_generator or TitleGenerator(db)

    async def run(self, request: TurnRequest, on_token: TokenSink | None = None) -> TurnResult:
        """Run one turn.

        Tokens go to ``on_token`` when given, otherwise to whatever sink is
        registered for the request ID.

        Raises:
            ChatError: the turn failed; ``status_code`` maps to HTTP.
        """
        ctx = TurnContext(request=request, on_token=on_token)
        try:
            await self._execute(ctx)
        except ChatError as e:
            logger.info(
                f"Turn {ctx.request_id or '-'} failed: {e.kind} ({e.status_code}): {e.message}"
            )
            raise
        except Exception as e:
            logger.exception(f"Turn {ctx.request_id or '-'} failed unexpectedly")
            raise Internal("Internal Server Error") from e
        return ctx.result()

    async def _execute(self, ctx: TurnContext):
        await self._validate(ctx)
        if ctx.replayed:
            return

        stages = [
            ("usage", self._check_usage),
            ("load_history", self._load_history),
            ("check_input", self._check_input),
            ("invoke_model", self._invoke_model),
            ("moderate_output", self._moderate_output),
            ("persist", self._persist),
        ]
        for name, stage in stages:
            logger.debug(f"Turn {ctx.request_id}: {name}")
            await stage(ctx)

        if ctx.created_conversation and not ctx.replayed:
            self.title_generator.schedule(ctx.conversation.id, ctx.content)

    async def _validate(self, ctx: TurnContext):
        self.validator.normalize(ctx)
        # Retried request IDs are answered from storage
        if ctx.request.request_id and await self.persistence.apply_replay(ctx):
            return
        await self.validator.resolve(ctx)

    async def _check_usage(self, ctx: TurnContext):
        await self.usage_gate.check(ctx.request.user_id, ctx.plan_type)

    async def _load_history(self, ctx: TurnContext):
        ctx.history = await self.history_builder.build(ctx.conversation.id, ctx.parent_message_id)
        history = trim_history_to_token_limit(
            ctx.history.messages, ctx.content, ctx.history.memory_summary_json
        )
        ctx.llm_messages = history + [{"role": "user", "content": ctx.content}]

    async def _check_input(self, ctx: TurnContext):
        await self.safety.check_input(ctx.content)

    async def _invoke_model(self, ctx: TurnContext):
        sink = ctx.on_token
        if sink is None and ctx.request_id in self.registry:
            sink = self.registry.forwarder(ctx.request_id)
        ctx.assistant_text = await self.invoker.invoke(
            ctx.model,
            ctx.llm_messages,
            memory_summary_json=ctx.history.memory_summary_json if ctx.history else None,
            on_token=sink,
        )
        logger.info(
            f"Turn {ctx.request_id}: {ctx.model.label} produced {len(ctx.assistant_text)} chars"
        )

    async def _moderate_output(self, ctx: TurnContext):
        await self.safety.check_output(ctx.assistant_text)

    async def _persist(self, ctx: TurnContext):
        await self.persistence.persist(ctx)
