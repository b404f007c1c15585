"""State shared by the stages of one turn."""

from dataclasses import dataclass, field

from models import Conversation, Message, ModelSelection, PlanType
from branchchat.models import TurnRequest, TurnResult
from branchchat.services.history import AssembledHistory
from branchchat.services.model_invoker import TokenSink


@dataclass
class TurnContext:
    """Accumulates what each stage resolves; later stages read earlier results."""

    request: TurnRequest
    on_token: TokenSink | None = None

    # Validator
    content: str = ""
    request_id: str = ""
    plan_type: PlanType = "free"
    conversation: Conversation | None = None
    created_conversation: bool = False
    parent_message_id: str | None = None
    branch_id: str | None = None
    model: ModelSelection | None = None

    # HistoryBuilder
    history: AssembledHistory | None = None
    llm_messages: list[dict[str, str]] = field(default_factory=list)

    # ModelInvoker
    assistant_text: str = ""

    # PersistenceLayer
    user_message: Message | None = None
    assistant_message: Message | None = None
    replayed: bool = False

    def result(self) -> TurnResult:
        if self.conversation is None or self.user_message is None or self.assistant_message is None:
            raise RuntimeError("Turn has not been persisted")
        return TurnResult(
            conversation=self.conversation,
            user_message=self.user_message,
            assistant_message=self.assistant_message,
        )
