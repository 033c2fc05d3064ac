"""Chat orchestration for the shopping assistant.

Role:
    Runs one chat turn through an ordered step pipeline and executes confirmed
    cart actions. Owns every piece of per-instance state: the product index,
    the chat and image caches, and the pending-action table.

Chat data contract (fields passed across steps):
    - intent: QueryIntent flags for the raw message.
    - history: client history trimmed to the configured limit.
    - cards/meta/context_lines: product retrieval results.
    - order_lines/address_lines: rendered collaborator data.
    - reply: final text; once set, retrieval and generation steps are skipped.
    - halted: set on a chat-cache hit; only always_run steps execute afterwards.

Step contracts:
    Cache Lookup:
        Serves a cached reply/cards pair for cacheable intents.
    Vision:
        Image turns only: extract parts (image cache), match stock, compose reply.
    Context Build:
        Loads orders, addresses, and deterministic product matches.
    Deterministic Reply:
        Answers without the LLM when the turn is unambiguous.
    Rerank:
        Lets the LLM narrow an uncertain mid-sized product list.
    Generation:
        Free-form LLM answer grounded on the built context.
    Actions:
        Proposes ADD_TO_CART as a pending, confirmable action.
    Cache Store:
        Saves reply and cards for cacheable intents.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .adk_runtime import AdkAgent, AdkStep
from .composer import (
    compose_deterministic_reply,
    compose_vision_reply,
    format_address_lines,
    format_order_lines,
    sanitize_reply,
    split_relevant_codes,
)
from .config import Settings
from .errors import ConfigurationError, UnsupportedActionError
from .gemini_client import LLMClient, text_part
from .intent import QueryIntent, detect_intent, extract_quantity, wants_add_to_cart
from .models import (
    ActionPayload,
    AiAction,
    ChatRequest,
    ChatResponse,
    ConfirmRequest,
    ConfirmResponse,
    HistoryItem,
    PartDescriptor,
    ProductCard,
)
from .pending_actions import PendingActionStore
from .product_index import ProductIndex
from .prompt_loader import load_prompt, render_prompt
from .reranker import rerank_products, should_rerank
from .response_cache import TTLCache, chat_cache_key, image_cache_key
from .scoring import ConfidencePolicy, SearchMeta, search_products
from .shop_store import AddressSource, CartService, OrderSource
from .vision import VisionPipeline

logger = logging.getLogger("partsbot.assistant")

GENERATION_TEMPERATURE = 0.4
GENERATION_MAX_TOKENS = 2048

ADMIN_ROLE = "admin"
ADMIN_ROLE_NOTE = "Bạn đang hỗ trợ tài khoản admin (có thể xem dữ liệu tổng quan nếu được cung cấp trong CONTEXT)."
USER_ROLE_NOTE = "Bạn đang hỗ trợ người dùng thường: tuyệt đối không suy đoán hay truy cập dữ liệu của người khác."
EMPTY_CONTEXT = "(không có)"

ADD_TO_CART_NOTE = "Thêm sản phẩm vào giỏ hàng của người dùng hiện tại"
CART_CONFIRMED_MESSAGE = "Đã thêm sản phẩm vào giỏ hàng"


@dataclass
class ChatContext:
    """Mutable context passed through each chat step."""
    user_id: str
    role: str
    request: ChatRequest
    model: str
    intent: QueryIntent
    history: List[HistoryItem]
    cache_key: Optional[str] = None
    reply: Optional[str] = None
    cards: List[ProductCard] = field(default_factory=list)
    actions: List[AiAction] = field(default_factory=list)
    meta: Optional[SearchMeta] = None
    context_lines: List[str] = field(default_factory=list)
    order_lines: List[str] = field(default_factory=list)
    address_lines: List[str] = field(default_factory=list)
    route: str = "llm"
    halted: bool = False

    @property
    def reply_ready(self) -> bool:
        return self.reply is not None


class ShoppingAssistant:
    def __init__(
        self,
        llm: Optional[LLMClient],
        index: ProductIndex,
        orders: OrderSource,
        addresses: AddressSource,
        cart: CartService,
        settings: Settings,
        clock: Callable[[], float] = time.time,
        vision: Optional[VisionPipeline] = None,
    ) -> None:
        """Purpose: Wire collaborators, caches, and the chat step pipeline.
        Inputs/Outputs: Inputs are the LLM client (None when unconfigured), product
            index, order/address/cart collaborators, settings, and a clock; no return.
        Side Effects / State: Creates the chat/image caches and pending-action store.
        Dependencies: Uses AdkAgent/AdkStep and the step methods on this class.
        Failure Modes: None at init; a missing LLM is reported on the first chat call.
        If Removed: The HTTP layer has nothing to call.
        Testing Notes: Inject a fake LLM, an in-memory catalog, and a manual clock.
        """
        # Every stateful structure is owned by this instance.
        self._llm = llm
        self._index = index
        self._orders = orders
        self._addresses = addresses
        self._cart = cart
        self._settings = settings
        self._policy = ConfidencePolicy(
            min_score=settings.confidence_min_score,
            min_ratio=settings.confidence_min_ratio,
            min_gap=settings.confidence_min_gap,
        )
        self._chat_cache: TTLCache[Tuple[str, List[ProductCard]]] = TTLCache(
            settings.chat_cache_ttl_sec, settings.cache_max_entries, settings.cache_evict_batch, clock
        )
        self._image_cache: TTLCache[Tuple[List[PartDescriptor], str]] = TTLCache(
            settings.image_cache_ttl_sec, settings.cache_max_entries, settings.cache_evict_batch, clock
        )
        self.pending_actions = PendingActionStore(settings.pending_action_ttl_sec, clock)
        if vision is None and llm is not None:
            vision = VisionPipeline(
                llm,
                index,
                settings.prompts_dir,
                policy=self._policy,
                image_timeout=settings.image_timeout_seconds,
            )
        self._vision = vision
        self._agent: AdkAgent[ChatContext] = AdkAgent(
            steps=[
                AdkStep("cache_lookup", self._step_cache_lookup, skip_if=lambda ctx: not ctx.intent.cacheable),
                AdkStep("vision", self._step_vision, skip_if=lambda ctx: not ctx.request.imageUrl),
                AdkStep("context_build", self._step_context_build, skip_if=lambda ctx: ctx.reply_ready),
                AdkStep("deterministic_reply", self._step_deterministic_reply, skip_if=lambda ctx: ctx.reply_ready),
                AdkStep("rerank", self._step_rerank, skip_if=self._skip_rerank),
                AdkStep("generation", self._step_generation, skip_if=lambda ctx: ctx.reply_ready),
                AdkStep("actions", self._step_actions, always_run=True),
                AdkStep("cache_store", self._step_cache_store, skip_if=lambda ctx: ctx.cache_key is None),
            ],
            name="chat",
        )

    def chat(self, request: ChatRequest, user_id: str, role: str = "user") -> ChatResponse:
        """Purpose: Answer one chat turn.
        Inputs/Outputs: Inputs are the request, the authenticated user id, and role;
            output is a ChatResponse with reply, cards, and pending actions.
        Side Effects / State: May refresh the index, fill caches, call the LLM, and
            create pending actions.
        Dependencies: Uses AdkAgent.run over ChatContext.
        Failure Modes: ConfigurationError when no LLM is configured; UpstreamError and
            ImageFetchError propagate from their steps.
        If Removed: POST /ai/chat has no implementation.
        Testing Notes: An exact code query answers deterministically with no LLM call.
        """
        # Fail fast without credentials; the feature is disabled, not degraded.
        if self._llm is None:
            raise ConfigurationError()
        limit = self._settings.history_limit
        history = list(request.history or [])[-limit:] if limit > 0 else []
        context = ChatContext(
            user_id=user_id,
            role=role,
            request=request,
            model=self._llm.model_name,
            intent=detect_intent(request.message),
            history=history,
        )
        executed = self._agent.run(context)
        logger.info(
            "user=%s route=%s cards=%s actions=%s steps=%s",
            user_id,
            context.route,
            len(context.cards),
            len(context.actions),
            ",".join(executed),
        )
        return ChatResponse(reply=context.reply or "", cards=context.cards, actions=context.actions)

    def confirm(self, request: ConfirmRequest, user_id: str) -> ConfirmResponse:
        """Purpose: Redeem a pending action and execute it.
        Inputs/Outputs: Inputs are the confirm request and the authenticated user id;
            output is the confirmation message and the updated cart.
        Side Effects / State: Consumes the pending action, then mutates the cart.
        Dependencies: Uses PendingActionStore.confirm and CartService.add_item.
        Failure Modes: NotFoundError, AuthorizationError, ExpiredError from the store;
            UnsupportedActionError for unknown types; CartError from the cart.
        If Removed: Proposed cart actions can never be executed.
        Testing Notes: Request productId/quantity override the stored payload.
        """
        # The action is consumed before the cart call, so a cart failure is not retryable.
        action = self.pending_actions.confirm(request.confirmationId, user_id)
        if action.type != "ADD_TO_CART":
            raise UnsupportedActionError()
        product_id = request.productId or action.payload.productId
        quantity = request.quantity or action.payload.quantity or 1
        cart = self._cart.add_item(user_id, product_id, quantity)
        logger.info("user=%s confirmed=%s product=%s quantity=%s", user_id, action.type, product_id, quantity)
        return ConfirmResponse(message=CART_CONFIRMED_MESSAGE, cart=cart)

    def _step_cache_lookup(self, context: ChatContext) -> None:
        # Orders and addresses are never cached; the skip_if guard enforces it.
        context.cache_key = chat_cache_key(
            context.user_id,
            context.model,
            context.request.message,
            context.request.imageUrl,
            context.history,
        )
        cached = self._chat_cache.get(context.cache_key)
        if cached is None:
            return
        context.reply, cards = cached
        context.cards = list(cards)
        context.route = "cache"
        context.halted = True

    def _step_vision(self, context: ChatContext) -> None:
        """Purpose: Answer an image turn from detected parts and stock matches.
        Inputs/Outputs: Input is ChatContext; sets reply and cards.
        Side Effects / State: Reads/writes the image cache; downloads and calls the LLM
            on a miss.
        Dependencies: Uses VisionPipeline and compose_vision_reply.
        Failure Modes: ImageFetchError and UpstreamError propagate.
        If Removed: Image URLs are ignored and the turn is answered as text.
        Testing Notes: A second identical image turn must not re-download.
        """
        # Parts are cached per image and message; stock matching always re-runs.
        if self._vision is None:
            raise ConfigurationError()
        image_url = context.request.imageUrl or ""
        key = image_cache_key(image_url, context.request.message)
        cached = self._image_cache.get(key)
        if cached is not None:
            parts, raw = cached
        else:
            parts, raw = self._vision.extract_parts(context.request.message, image_url)
            self._image_cache.set(key, (parts, raw))
        context.cards = self._vision.search_by_parts(parts)
        context.reply = sanitize_reply(compose_vision_reply(parts, context.cards, raw))
        context.route = "vision"

    def _step_context_build(self, context: ChatContext) -> None:
        """Purpose: Gather orders, addresses, and product matches for the turn.
        Inputs/Outputs: Input is ChatContext; fills order/address lines, cards, meta,
            and context_lines.
        Side Effects / State: May refresh the product index.
        Dependencies: Uses OrderSource, AddressSource, and search_products.
        Failure Modes: Collaborator errors propagate.
        If Removed: Neither the composer nor the LLM has any data to answer from.
        Testing Notes: A message with no product tokens leaves cards empty.
        """
        # Only the sections the intent asks for are loaded.
        intent = context.intent
        if intent.wants_orders:
            context.order_lines = format_order_lines(self._orders.find_orders_for_user(context.user_id))
        if intent.wants_addresses:
            context.address_lines = format_address_lines(self._addresses.get_addresses(context.user_id))
        if intent.wants_products:
            result = search_products(self._index.get_index(), context.request.message, self._policy)
            context.cards = result.cards
            context.meta = result.meta
            context.context_lines = result.context_lines

    def _step_deterministic_reply(self, context: ChatContext) -> None:
        """Purpose: Answer without the LLM when the turn is unambiguous.
        Inputs/Outputs: Input is ChatContext; sets reply when the composer applies.
        Side Effects / State: None beyond context.
        Dependencies: Uses compose_deterministic_reply.
        Failure Modes: None.
        If Removed: Every turn pays LLM latency.
        Testing Notes: Uncertain product matches escalate unless escalation is disabled.
        """
        # Free-form questions always go to the LLM; uncertain lists go there when allowed.
        intent = context.intent
        if intent.needs_freeform:
            return
        uncertain = (
            intent.wants_products
            and bool(context.cards)
            and context.meta is not None
            and not context.meta.confident
        )
        if uncertain and self._settings.escalate_uncertain:
            return
        reply = compose_deterministic_reply(
            intent, context.cards, context.meta, context.order_lines, context.address_lines
        )
        if reply is None:
            return
        context.reply = sanitize_reply(reply)
        context.route = "deterministic"

    def _skip_rerank(self, context: ChatContext) -> bool:
        return context.reply_ready or not should_rerank(context.intent, context.meta, context.cards)

    def _step_rerank(self, context: ChatContext) -> None:
        context.cards = rerank_products(self._llm, self._settings.prompts_dir, context.request.message, context.cards)

    def _build_context_text(self, context: ChatContext) -> str:
        sections: List[str] = []
        if context.intent.wants_orders:
            lines = context.order_lines or ["- Bạn chưa có đơn hàng nào."]
            sections.append("\n".join(["ĐƠN HÀNG GẦN ĐÂY (tối đa 5):", *lines]))
        if context.intent.wants_addresses:
            if context.address_lines:
                sections.append("\n".join(["ĐỊA CHỈ ĐÃ LƯU (ưu tiên địa chỉ mặc định):", *context.address_lines]))
            else:
                sections.append("ĐỊA CHỈ ĐÃ LƯU: chưa có địa chỉ nào.")
        if context.context_lines:
            sections.append("\n".join(["SẢN PHẨM LIÊN QUAN (tối đa 30):", *context.context_lines]))
        return "\n\n".join(sections)

    def _build_system_instruction(self, context: ChatContext) -> str:
        template = load_prompt(self._settings.prompts_dir / "system_instruction.txt")
        return render_prompt(
            template,
            {
                "ROLE_NOTE": ADMIN_ROLE_NOTE if context.role == ADMIN_ROLE else USER_ROLE_NOTE,
                "CONTEXT": self._build_context_text(context) or EMPTY_CONTEXT,
            },
        )

    @staticmethod
    def _build_contents(context: ChatContext) -> List[dict]:
        # Client "ai" turns are the model's turns on the wire.
        contents = [
            {"role": "model" if item.role == "ai" else "user", "parts": [text_part(item.content)]}
            for item in context.history
        ]
        contents.append({"role": "user", "parts": [text_part(context.request.message)]})
        return contents

    def _step_generation(self, context: ChatContext) -> None:
        """Purpose: Produce a free-form LLM answer grounded on the built context.
        Inputs/Outputs: Input is ChatContext; sets reply and may narrow cards.
        Side Effects / State: One LLM call.
        Dependencies: Uses system_instruction.txt, split_relevant_codes, sanitize_reply.
        Failure Modes: UpstreamError propagates to the caller.
        If Removed: Free-form and uncertain turns get no answer.
        Testing Notes: "RELEVANT_CODES: []" clears the cards; a missing line keeps them.
        """
        # The RELEVANT_CODES control line narrows cards and is removed from the reply.
        raw = self._llm.generate_content(
            self._build_contents(context),
            system_instruction=self._build_system_instruction(context),
            temperature=GENERATION_TEMPERATURE,
            max_output_tokens=GENERATION_MAX_TOKENS,
        )
        visible, codes = split_relevant_codes(raw)
        if codes is not None:
            wanted = {code.lower() for code in codes}
            context.cards = [card for card in context.cards if card.code and card.code.lower() in wanted]
        context.reply = sanitize_reply(visible)
        context.route = "llm"

    def _step_actions(self, context: ChatContext) -> None:
        # Runs on cache hits too, so every turn gets its own confirmation id.
        if not wants_add_to_cart(context.request.message) or not context.cards:
            return
        first = context.cards[0]
        action = AiAction(
            payload=ActionPayload(productId=first.productId, quantity=extract_quantity(context.request.message) or 1),
            note=ADD_TO_CART_NOTE,
        )
        context.actions.append(self.pending_actions.create(context.user_id, action))

    def _step_cache_store(self, context: ChatContext) -> None:
        if context.reply is None:
            return
        self._chat_cache.set(context.cache_key, (context.reply, list(context.cards)))
