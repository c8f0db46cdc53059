"""
Request / response schemas. JSON bodies use camelCase keys; every mutating body carries `csrf`.
"""
import re
from typing import Awaitable, Callable, Literal, Optional, TypeVar
from uuid import UUID

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from roorq.order_state import OrderStatus

VendorStatus = Literal["approved", "rejected", "suspended", "under_review", "documents_pending"]
ManagedRole = Literal["customer", "admin", "super_admin"]
BusinessType = Literal["individual", "proprietorship", "partnership", "pvt_ltd", "llp"]
DocumentType = Literal[
    "pan_card",
    "gst_certificate",
    "bank_proof",
    "address_proof",
    "identity_proof",
    "business_registration",
]
PaymentMethod = Literal["cod", "upi", "card"]

CsrfField = Field(..., min_length=16, description="Double-submit token, must equal the auth_csrf cookie")


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


ModelT = TypeVar("ModelT", bound=BaseModel)


def json_body(model: type[ModelT]) -> Callable[[Request], Awaitable[ModelT]]:
    """
    Dependency that reads and validates the JSON body as `model`.
    Guarded routes declare it after their guard dependency, so an unauthenticated
    or forbidden caller is turned away before the body is even decoded.
    """
    async def parse(request: Request) -> ModelT:
        try:
            data = await request.json()
        except ValueError as e:
            error = {
                "type": "json_invalid",
                "loc": ("body", getattr(e, "pos", 0)),
                "msg": "JSON decode error",
                "input": {},
            }
            raise RequestValidationError([error])
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RequestValidationError(e.errors(include_url=False, include_context=False), body=data)

    return parse


def normalize_phone(value: str) -> str:
    """Indian mobile number -> +91XXXXXXXXXX. Accepts 10 digits or 12 starting with 91."""
    digits = re.sub(r"\D", "", value)
    if len(digits) == 10:
        return f"+91{digits}"
    if len(digits) == 12 and digits.startswith("91"):
        return f"+{digits}"
    raise ValueError("Invalid phone number")


# ========== ADMIN ==========

class AdminVendorUpdate(ApiModel):
    status: VendorStatus
    reason: Optional[str] = Field(default=None, max_length=300)
    csrf: str = CsrfField


class AdminUserRoleUpdate(ApiModel):
    user_id: UUID
    role: ManagedRole
    csrf: str = CsrfField


class AdminOrderUpdate(ApiModel):
    status: Optional[OrderStatus] = None
    rider_id: Optional[UUID] = None
    action: Optional[Literal["collect_payment", "cancel"]] = None
    cancellation_reason: Optional[str] = Field(default=None, min_length=2, max_length=200)
    csrf: str = CsrfField

    @model_validator(mode="after")
    def _has_updates(self):
        if not (self.status or "rider_id" in self.model_fields_set or self.action):
            raise ValueError("No updates provided")
        return self

    @property
    def rider_provided(self) -> bool:
        """riderId present in the body (possibly null, which unassigns)."""
        return "rider_id" in self.model_fields_set


class RiderCreate(ApiModel):
    name: str = Field(..., min_length=2, max_length=100)
    phone: str = Field(..., min_length=6, max_length=20)
    csrf: str = CsrfField


class RiderUpdate(ApiModel):
    is_active: bool
    csrf: str = CsrfField


# ========== VENDOR ==========

class VendorProfileUpdate(ApiModel):
    store_name: str = Field(..., min_length=2, max_length=120)
    store_description: Optional[str] = Field(default=None, max_length=500)
    store_logo_url: Optional[HttpUrl] = None
    store_banner_url: Optional[HttpUrl] = None
    business_name: Optional[str] = Field(default=None, min_length=2, max_length=140)
    business_category: Optional[str] = Field(default=None, min_length=2, max_length=120)
    business_email: Optional[EmailStr] = None
    business_phone: Optional[str] = Field(default=None, min_length=6, max_length=20)
    csrf: str = CsrfField


class VendorBankingUpdate(ApiModel):
    bank_account_number: str = Field(..., min_length=6, max_length=40)
    bank_ifsc: str = Field(..., min_length=5, max_length=20)
    bank_account_name: str = Field(..., min_length=2, max_length=120)
    upi_id: Optional[str] = Field(default=None, min_length=3, max_length=120)
    csrf: str = CsrfField


class Address(ApiModel):
    line1: str = Field(..., min_length=2, max_length=200)
    line2: Optional[str] = Field(default=None, max_length=200)
    city: str = Field(..., min_length=2, max_length=100)
    state: str = Field(..., min_length=2, max_length=100)
    postal_code: str = Field(..., min_length=4, max_length=20)


class VendorDocument(ApiModel):
    document_type: DocumentType
    document_url: HttpUrl
    document_number: Optional[str] = None


class VendorSignup(ApiModel):
    full_name: str = Field(..., min_length=2, max_length=120)
    phone: str = Field(..., min_length=6, max_length=20)
    business_name: str = Field(..., min_length=2, max_length=140)
    business_type: BusinessType
    business_category: str = Field(..., min_length=2, max_length=100)
    business_email: EmailStr
    business_phone: str = Field(..., min_length=6, max_length=20)
    pan_number: Optional[str] = Field(default=None, min_length=6, max_length=20)
    gstin: Optional[str] = Field(default=None, min_length=5, max_length=30)
    store_name: Optional[str] = Field(default=None, min_length=2, max_length=120)
    store_description: Optional[str] = Field(default=None, max_length=500)
    bank_account_number: Optional[str] = Field(default=None, min_length=6, max_length=40)
    bank_ifsc: Optional[str] = Field(default=None, min_length=5, max_length=20)
    bank_account_name: Optional[str] = Field(default=None, min_length=2, max_length=120)
    upi_id: Optional[str] = Field(default=None, min_length=3, max_length=120)
    pickup_address: Optional[Address] = None
    return_address: Optional[Address] = None
    documents: Optional[list[VendorDocument]] = None
    csrf: str = CsrfField


class VendorOrderUpdate(ApiModel):
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    tracking_url: Optional[HttpUrl] = None
    csrf: str = CsrfField

    @model_validator(mode="after")
    def _has_updates(self):
        if not (self.status or {"tracking_number", "tracking_url"} & self.model_fields_set):
            raise ValueError("No updates provided")
        return self


# ========== CHECKOUT ==========

class CartItem(ApiModel):
    product_id: UUID
    quantity: int = Field(..., ge=1, le=20)


class CheckoutRequest(ApiModel):
    items: list[CartItem] = Field(..., min_length=1)
    delivery_hostel: str = Field(..., min_length=2, max_length=100)
    delivery_room: str = Field(..., min_length=1, max_length=30)
    phone: str
    payment_method: PaymentMethod = "cod"
    csrf: str = CsrfField

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, value: str) -> str:
        return normalize_phone(value)


class CheckoutResult(BaseModel):
    """Shape returned by the create_marketplace_order database function."""
    parent_order_id: UUID
    order_number: str
    total_amount: float


# ========== AUTH ==========

class _OtpIdentity(ApiModel):
    """Email or phone identity. `method` picks which one is required."""
    method: Literal["email", "phone"]
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    csrf: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, value: Optional[str]) -> Optional[str]:
        return normalize_phone(value) if value is not None else None

    @model_validator(mode="after")
    def _has_identity(self):
        if self.method == "email" and not self.email:
            raise ValueError("Email is required")
        if self.method == "phone" and not self.phone:
            raise ValueError("Invalid phone number")
        return self

    @property
    def identifier(self) -> str:
        return self.email if self.method == "email" else self.phone


class OtpRequest(_OtpIdentity):
    mode: Literal["signin", "signup"]
    redirect: Optional[str] = None
    ref: Optional[str] = Field(default=None, max_length=64)


class OtpVerify(_OtpIdentity):
    token: str = Field(..., min_length=4, max_length=12)


class RecoveryRequest(ApiModel):
    email: EmailStr
    redirect: Optional[str] = None
    csrf: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()
