from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class HistoryItem(BaseModel):
    """One prior turn of the conversation as replayed by the client."""
    role: Literal["user", "ai"]
    content: str = Field(max_length=4000)


class ChatRequest(BaseModel):
    """Request payload for the chat API."""
    message: str = Field(max_length=4000)
    imageUrl: Optional[str] = None
    history: Optional[List[HistoryItem]] = None


class ProductCard(BaseModel):
    """Denormalized product summary returned to the client."""
    productId: str
    name: str
    price: float = 0
    stock: int = 0
    image: Optional[str] = None
    category: Optional[str] = None
    code: Optional[str] = None


class ActionPayload(BaseModel):
    productId: str
    quantity: int = 1


class AiAction(BaseModel):
    """State-changing action proposed by the assistant, pending user confirmation."""
    type: Literal["ADD_TO_CART"] = "ADD_TO_CART"
    payload: ActionPayload
    requiresConfirmation: bool = True
    confirmationId: Optional[str] = None
    note: Optional[str] = None


class ChatResponse(BaseModel):
    """Response payload returned by the chat API."""
    reply: str
    cards: List[ProductCard] = Field(default_factory=list)
    actions: List[AiAction] = Field(default_factory=list)


class ConfirmRequest(BaseModel):
    """Request payload for confirming a pending action."""
    confirmationId: str
    productId: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=1)


class CartItem(BaseModel):
    productId: str
    quantity: int


class Cart(BaseModel):
    userId: str
    items: List[CartItem] = Field(default_factory=list)


class ConfirmResponse(BaseModel):
    message: str
    cart: Cart


class PartDescriptor(BaseModel):
    """Component read off a schematic or photo by the vision model."""
    name: Optional[str] = None
    vietnameseName: Optional[str] = None
    value: Optional[str] = None
    package: Optional[str] = None
    notes: Optional[str] = None
