import uuid
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
from typing import Annotated, Optional, Literal, Dict, List, Any, Union
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, computed_field, field_validator, model_validator

from services.periods import period_label as label_for_period


Classification = Literal["residential", "commercial"]
ChargeType = Literal["flat", "per_unit"]
PenaltyType = Literal["flat", "percent"]
AccountStatus = Literal["active", "inactive", "disconnected"]
MeterStatus = Literal["active", "inactive", "removed", "under_maintenance"]
Role = Literal["admin", "water_bill_officer", "meter_reader"]
BillStatus = Literal["unpaid", "overdue", "paid"]

PERIOD_KEY_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"

# Decimals stay Decimal in Python, go out as JSON numbers
Money = Annotated[Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")]
Quantity = Annotated[Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")]


def _upper_strip(v: Any) -> str:
    return str(v or "").upper().strip()


# account and meter numbers are stored upper-cased
Code = Annotated[str, BeforeValidator(_upper_strip)]


def _reading_value(v: Any) -> Any:
    if v is None or isinstance(v, bool):
        return v
    try:
        d = Decimal(str(v).strip())
    except InvalidOperation:
        return str(v)
    return d if d.is_finite() else str(v)


# meter readings are range-checked per line during ingestion, not here
ReadingValue = Annotated[Union[Decimal, str], BeforeValidator(_reading_value)]


# =========================
# Auth
# =========================
class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    full_name: str = ""
    password: str = Field(min_length=6)
    role: Role = "meter_reader"


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6)
    role: Optional[Role] = None
    disabled: Optional[bool] = None


class UserRead(BaseModel):
    id: uuid.UUID
    username: str
    full_name: str
    role: str
    disabled: bool
    model_config = ConfigDict(from_attributes=True)


# =========================
# Settings provider (validated before the billing core sees it)
# =========================
class TariffTierSchema(BaseModel):
    classification: Classification
    tier: str = Field(min_length=1, max_length=32)
    min_consumption: Quantity = Field(ge=0)
    max_consumption: Quantity = Field(ge=0)
    charge_type: ChargeType = "per_unit"
    flat_amount: Money = Field(default=Decimal("0"), ge=0)
    unit_rate: Money = Field(default=Decimal("0"), ge=0)
    description: str = ""
    is_active: bool = True
    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _bounds(self):
        if self.min_consumption > self.max_consumption:
            raise ValueError(f"min_consumption cannot be greater than max_consumption for tier {self.tier}")
        return self


class TariffSchedule(BaseModel):
    residential: List[TariffTierSchema] = Field(default_factory=list)
    commercial: List[TariffTierSchema] = Field(default_factory=list)

    @model_validator(mode="after")
    def _no_overlaps(self):
        for classification in ("residential", "commercial"):
            tiers = getattr(self, classification)
            labels = set()
            for t in tiers:
                if t.classification != classification:
                    raise ValueError(f"Tier {t.tier} is listed under {classification} but classified {t.classification}")
                if t.tier in labels:
                    raise ValueError(f"Duplicate {classification} tier {t.tier}")
                labels.add(t.tier)
            active = sorted((t for t in tiers if t.is_active), key=lambda t: t.min_consumption)
            for prev, cur in zip(active, active[1:]):
                if cur.min_consumption <= prev.max_consumption:
                    raise ValueError(f"Tariff range {cur.tier} overlaps with existing tier: {prev.tier}")
        return self

    def for_classification(self, classification: str) -> List[TariffTierSchema]:
        return list(getattr(self, classification, None) or [])


class DiscountPolicy(BaseModel):
    discount_rate: Money = Field(default=Decimal("5"), ge=0, le=100)
    applicable_tiers: List[str] = Field(default_factory=lambda: ["31-40", "41+"])


class SettingsBase(BaseModel):
    penalty_type: PenaltyType = "flat"
    penalty_value: Money = Field(default=Decimal("0"), ge=0)
    due_day_of_month: int = Field(default=15, ge=1, le=31)
    grace_days: int = Field(default=0, ge=0, le=60)
    reading_start_day_of_month: int = Field(default=1, ge=1, le=31)
    reading_window_days: int = Field(default=7, ge=1, le=31)


class BillSettings(SettingsBase):
    """Everything one bill computation depends on, at a given settings version."""
    version: int = 1
    tariffs: TariffSchedule = Field(default_factory=TariffSchedule)
    senior_discount: DiscountPolicy = Field(default_factory=DiscountPolicy)
    updated_at: Optional[datetime] = None


class SettingsUpdate(BaseModel):
    penalty_type: Optional[PenaltyType] = None
    penalty_value: Optional[Decimal] = Field(default=None, ge=0)
    due_day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    grace_days: Optional[int] = Field(default=None, ge=0, le=60)
    reading_start_day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    reading_window_days: Optional[int] = Field(default=None, ge=1, le=31)
    senior_discount: Optional[DiscountPolicy] = None


class TariffQuote(BaseModel):
    classification: Classification
    consumption: Quantity
    tier: TariffTierSchema
    base_amount: Money
    discount: Money
    discount_reason: str
    final_amount: Money
    breakdown: Dict[str, Any]


# =========================
# Members & meters
# =========================
class MeterCreate(BaseModel):
    meter_number: Code
    meter_status: MeterStatus = "active"
    is_billing_active: bool = True
    multiplier: Decimal = Field(default=Decimal("1"), gt=0)
    initial_reading: Decimal = Field(default=Decimal("0"), ge=0)
    meter_brand: str = ""
    meter_model: str = ""
    meter_size: str = ""

    @field_validator("meter_number")
    @classmethod
    def _required(cls, v: str) -> str:
        if not v:
            raise ValueError("meter_number is required")
        return v


class MeterRead(BaseModel):
    id: int
    meter_number: str
    meter_status: str
    is_billing_active: bool
    multiplier: Quantity
    initial_reading: Quantity
    last_reading: Optional[Quantity] = None
    last_reading_date: Optional[datetime] = None
    meter_brand: str
    meter_model: str
    meter_size: str
    model_config = ConfigDict(from_attributes=True)


class MemberCreate(BaseModel):
    account_no: Code
    account_name: str = Field(min_length=1)
    classification: Classification = "residential"
    account_status: AccountStatus = "active"
    is_senior_citizen: bool = False
    senior_id: str = ""
    has_pwd: bool = False
    pwd_discount_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    address_text: str = ""
    mobile_number: str = ""
    email: Optional[str] = None
    meters: List[MeterCreate] = Field(default_factory=list)

    @field_validator("account_no")
    @classmethod
    def _required(cls, v: str) -> str:
        if not v:
            raise ValueError("account_no is required")
        return v


class MemberUpdate(BaseModel):
    account_name: Optional[str] = None
    classification: Optional[Classification] = None
    account_status: Optional[AccountStatus] = None
    is_senior_citizen: Optional[bool] = None
    senior_id: Optional[str] = None
    has_pwd: Optional[bool] = None
    pwd_discount_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    address_text: Optional[str] = None
    mobile_number: Optional[str] = None
    email: Optional[str] = None


class MemberRead(BaseModel):
    id: int
    account_no: str
    account_name: str
    classification: str
    account_status: str
    is_senior_citizen: bool
    senior_id: str
    has_pwd: bool
    pwd_discount_rate: Money
    address_text: str
    mobile_number: str
    email: Optional[str] = None
    last_payment_date: Optional[datetime] = None
    last_payment_amount: Money
    average_monthly_consumption: Quantity
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class MemberDetail(MemberRead):
    meters: List[MeterRead] = Field(default_factory=list)


# =========================
# Readings
# =========================
class ReadingLineIn(BaseModel):
    meter_number: Code
    previous_reading: Optional[ReadingValue] = None
    present_reading: ReadingValue
    multiplier: Optional[ReadingValue] = None


class ReadingSubmission(BaseModel):
    period_key: str = Field(pattern=PERIOD_KEY_PATTERN)
    account_no: Code
    readings: List[ReadingLineIn] = Field(min_length=1)
    generate_bill: bool = True
    remarks: str = ""


class ReadingRead(BaseModel):
    id: int
    period_key: str
    meter_number: str
    previous_reading: Quantity
    present_reading: Quantity
    raw_consumed: Quantity
    multiplier: Quantity
    consumed: Quantity
    read_at: datetime
    read_by: str
    reading_type: str
    model_config = ConfigDict(from_attributes=True)


class ReadingLineOutcome(BaseModel):
    meter_number: str
    status: Literal["accepted", "skipped", "failed"]
    code: Optional[str] = None
    message: str = ""
    reading: Optional[ReadingRead] = None


class ImportRow(ReadingLineIn):
    account_no: Code


class ImportRequest(BaseModel):
    period_key: str = Field(pattern=PERIOD_KEY_PATTERN)
    rows: List[ImportRow] = Field(min_length=1)
    generate_bills: bool = True


class ImportRowOutcome(BaseModel):
    account_no: str
    meter_number: str
    status: Literal["success", "skipped", "failed"]
    message: str = ""


class ImportResult(BaseModel):
    success: int = 0
    failed: int = 0
    skipped: int = 0
    details: List[ImportRowOutcome] = Field(default_factory=list)
    tariff_review: List[str] = Field(default_factory=list)


# =========================
# Bills & payments
# =========================
class BillRead(BaseModel):
    id: uuid.UUID
    account_no: str
    account_name: str
    classification: str
    period_key: str
    meter_reading_lines: List[Dict[str, Any]]
    total_consumed: Quantity
    tariff_used: Optional[Dict[str, Any]] = None
    breakdown: Optional[Dict[str, Any]] = None
    base_amount: Money
    discount: Money
    discount_reason: str
    final_amount: Money
    settings_version: int
    due_day_used: int
    grace_days_used: int
    penalty_type_used: str
    penalty_value_used: Money
    penalty_applied: Money
    total_due: Money
    due_date: date
    status: BillStatus
    paid_at: Optional[datetime] = None
    receipt_number: Optional[str] = None
    needs_tariff_review: bool
    member_snapshot: Optional[Dict[str, Any]] = None
    remarks: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def period_label(self) -> str:
        return label_for_period(self.period_key)


class ReadingSubmissionResult(BaseModel):
    account_no: str
    period_key: str
    lines: List[ReadingLineOutcome]
    total_consumed: Quantity
    bill: Optional[BillRead] = None
    tariff_error: Optional[str] = None


class BillPreviewRequest(BaseModel):
    account_no: Code
    period_key: Optional[str] = Field(default=None, pattern=PERIOD_KEY_PATTERN)
    readings: List[ReadingLineIn] = Field(min_length=1)


class BillPreview(BaseModel):
    account_no: str
    account_name: str
    classification: str
    meter_reading_lines: List[Dict[str, Any]]
    total_consumed: Quantity
    quote: TariffQuote


class BillSummary(BaseModel):
    total_bills: int = 0
    total_amount: Money = Decimal("0")
    total_discount: Money = Decimal("0")
    total_penalty: Money = Decimal("0")
    by_classification: Dict[str, int] = Field(default_factory=dict)
    by_status: Dict[str, int] = Field(default_factory=dict)
    needs_tariff_review: int = 0


class PaymentCreate(BaseModel):
    receipt_number: str = Field(min_length=1, max_length=64)
    method: str = Field(min_length=1, max_length=32)
    amount: Optional[Decimal] = Field(default=None, gt=0)

    @field_validator("receipt_number", "method", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> str:
        return str(v or "").strip()


class PaymentRead(BaseModel):
    id: uuid.UUID
    bill_id: uuid.UUID
    account_no: str
    period_key: str
    receipt_number: str
    method: str
    amount_paid: Money
    discount_applied: Money
    penalty_applied: Money
    classification: str
    received_by: str
    paid_at: datetime
    notes: str
    model_config = ConfigDict(from_attributes=True)


class AnalyticsRead(BaseModel):
    period_key: Optional[str] = None
    members: int
    active_members: int
    disconnected_members: int
    unpaid_bills: int
    paid_bills: int
    overdue_bills: int
    unpaid_amount: Money
    collected_amount: Money
    overdue_amount: Money
    read_meters: int
    unread_meters: int
    reading_window_start: Optional[date] = None
    reading_window_end: Optional[date] = None


# =========================
# Reader work list
# =========================
class WorklistMember(BaseModel):
    account_no: str
    account_name: str
    classification: str
    address_text: str
    meters: List[MeterRead]
    has_reading: bool
    has_any_reading: bool


class ReadingWorklistRead(BaseModel):
    period_key: str
    items: List[WorklistMember]
    total: int
    read_count: int
    any_read_count: int
    unread_count: int


# =========================
# Public inquiry
# =========================
class InquiryRequest(BaseModel):
    account_no: Code = Field(min_length=1)
    only_last_12: bool = True


class InquiryMeter(BaseModel):
    meter_number: str
    meter_status: str
    meter_brand: str
    meter_model: str
    meter_size: str
    is_billing_active: bool
    last_reading: Optional[Quantity] = None
    model_config = ConfigDict(from_attributes=True)


class InquiryMember(BaseModel):
    account_no: str
    account_name: str
    account_status: str
    classification: str
    is_senior_citizen: bool
    senior_id: str
    has_pwd: bool
    address_text: str
    mobile_number: str
    email: str
    meters: List[InquiryMeter]


class InquiryPayment(BaseModel):
    receipt_number: str
    method: str
    amount_paid: Money
    paid_at: datetime
    model_config = ConfigDict(from_attributes=True)


class InquiryBill(BaseModel):
    id: uuid.UUID
    period_key: str
    total_consumed: Quantity
    base_amount: Money
    discount: Money
    discount_reason: str
    final_amount: Money
    penalty_applied: Money
    total_due: Money
    due_date: date
    status: BillStatus
    paid_at: Optional[datetime] = None
    receipt_number: Optional[str] = None
    payments: List[InquiryPayment] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def period_label(self) -> str:
        return label_for_period(self.period_key)


class InquirySummary(BaseModel):
    total_bills: int
    paid_bills: int
    unpaid_bills: int
    total_outstanding: Money
    last_payment_date: Optional[datetime] = None
    last_payment_amount: Optional[Money] = None
    active_meters: int


class InquiryResult(BaseModel):
    member: InquiryMember
    bills: List[InquiryBill]
    summary: InquirySummary
    message: str = "Some details are masked for privacy."
