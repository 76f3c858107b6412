"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, EmailStr


# ============ Auth Schemas ============

class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: Optional[str] = None


class UserLogin(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str]
    created_at: datetime
    is_active: bool

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# ============ Chat Schemas ============
# Request fields are optional so bad input surfaces as invalid_input,
# not as a framework validation error.

class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    thread_id: Optional[str] = Field(None, alias="threadId")
    content: Optional[str] = None
    mode: Optional[str] = None  # "verified" | anything else means exploration


class VoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    duel_id: Optional[str] = Field(None, alias="duelId")
    choice: Optional[str] = None  # "A" | "B"


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    role: str
    content: str
    created_at: datetime = Field(serialization_alias="createdAt")


class ThreadRef(BaseModel):
    id: str
    title: Optional[str] = None
    locked_provider: Optional[str] = Field(None, serialization_alias="lockedProvider")


class DuelSide(BaseModel):
    key: str
    text: str


class DuelOut(BaseModel):
    id: str
    left: DuelSide
    right: DuelSide


class ChatResponse(BaseModel):
    ok: bool = True
    kind: str  # "duel" | "single"
    thread: ThreadRef
    duel: Optional[DuelOut] = None
    messages: List[MessageOut]


class VoteThread(BaseModel):
    id: str
    locked_provider: Optional[str] = Field(None, serialization_alias="lockedProvider")


class VoteResponse(BaseModel):
    ok: bool = True
    thread: VoteThread
    messages: List[MessageOut]


class QuotaResponse(BaseModel):
    ok: bool = True
    plan: str
    subscription_status: str = Field(serialization_alias="subscriptionStatus")
    period_key: str = Field(serialization_alias="periodKey")
    remaining_messages: int = Field(serialization_alias="remainingMessages")
    remaining_verified: int = Field(serialization_alias="remainingVerified")
    remaining_verified_today: int = Field(serialization_alias="remainingVerifiedToday")


# ============ Thread Schemas ============

class ThreadCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)


class ThreadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")


class ThreadResponse(BaseModel):
    ok: bool = True
    thread: ThreadOut


class ThreadListResponse(BaseModel):
    ok: bool = True
    threads: List[ThreadOut]


class MessageListResponse(BaseModel):
    ok: bool = True
    messages: List[MessageOut]


class OkResponse(BaseModel):
    ok: bool = True


# ============ Billing Schemas ============

class OrderRequest(BaseModel):
    plan: Optional[str] = None  # "A1" | "A2"


class OrderOut(BaseModel):
    id: str
    amount: int
    currency: str


class OrderResponse(BaseModel):
    ok: bool = True
    plan: str
    order: OrderOut
    public_key: str = Field(serialization_alias="publicKey")


class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan: Optional[str] = None
    order_id: Optional[str] = Field(None, alias="orderId")
    payment_id: Optional[str] = Field(None, alias="paymentId")
    signature: Optional[str] = None


class SubscriptionOut(BaseModel):
    plan: str
    status: str
    current_period_end: Optional[datetime] = Field(None, serialization_alias="currentPeriodEnd")


class VerifyResponse(BaseModel):
    ok: bool = True
    subscription: SubscriptionOut
