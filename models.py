from tortoise import fields, models
import uuid


ROLE_ADMIN = "admin"
ROLE_BILL_OFFICER = "water_bill_officer"
ROLE_METER_READER = "meter_reader"
ROLES = (ROLE_ADMIN, ROLE_BILL_OFFICER, ROLE_METER_READER)

BILL_UNPAID = "unpaid"
BILL_OVERDUE = "overdue"
BILL_PAID = "paid"


# -------- Users --------
class User(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    username = fields.CharField(max_length=50, unique=True, index=True)
    full_name = fields.CharField(max_length=200, default="")
    hashed_password = fields.CharField(max_length=128)
    role = fields.CharField(max_length=32, default=ROLE_METER_READER, index=True)
    disabled = fields.BooleanField(default=False)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "users"

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


# ========================
# Settings & tariffs
# ========================
class WaterSettings(models.Model):
    """
    Single-row global billing configuration. `version` is bumped on every edit
    (including tariff edits) and copied into each bill computed under it.
    """
    id = fields.IntField(pk=True)
    version = fields.IntField(default=1)

    penalty_type = fields.CharField(max_length=16, default="flat")  # flat | percent
    penalty_value = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    due_day_of_month = fields.IntField(default=15)
    grace_days = fields.IntField(default=0)

    reading_start_day_of_month = fields.IntField(default=1)
    reading_window_days = fields.IntField(default=7)

    senior_discount_rate = fields.DecimalField(max_digits=5, decimal_places=2, default=5)
    senior_discount_tiers = fields.JSONField(default=list)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "water_settings"


class TariffTier(models.Model):
    id = fields.IntField(pk=True)
    classification = fields.CharField(max_length=16, index=True)  # residential | commercial
    tier = fields.CharField(max_length=32)                         # label, e.g. "6-10", "41+"
    min_consumption = fields.DecimalField(max_digits=12, decimal_places=3)
    max_consumption = fields.DecimalField(max_digits=12, decimal_places=3)
    charge_type = fields.CharField(max_length=16, default="per_unit")  # flat | per_unit
    flat_amount = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    unit_rate = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    description = fields.CharField(max_length=255, default="")
    is_active = fields.BooleanField(default=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "tariff_tiers"
        unique_together = ("classification", "tier")

    def __str__(self) -> str:
        return f"{self.classification}:{self.tier}"


# ========================
# Members & meters
# ========================
class WaterMember(models.Model):
    id = fields.IntField(pk=True)
    account_no = fields.CharField(max_length=32, unique=True, index=True)  # PN No
    account_name = fields.CharField(max_length=200, index=True)
    classification = fields.CharField(max_length=16, default="residential", index=True)
    account_status = fields.CharField(max_length=16, default="active", index=True)

    is_senior_citizen = fields.BooleanField(default=False)
    senior_id = fields.CharField(max_length=64, default="")
    has_pwd = fields.BooleanField(default=False)
    pwd_discount_rate = fields.DecimalField(max_digits=5, decimal_places=2, default=0)

    address_text = fields.CharField(max_length=255, default="")
    mobile_number = fields.CharField(max_length=32, default="")
    email = fields.CharField(max_length=100, null=True)

    last_payment_date = fields.DatetimeField(null=True)
    last_payment_amount = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    average_monthly_consumption = fields.DecimalField(max_digits=12, decimal_places=3, default=0)

    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True, index=True)

    meters: fields.ReverseRelation["WaterMeter"]
    bills: fields.ReverseRelation["WaterBill"]

    class Meta:
        table = "water_members"

    def __str__(self) -> str:
        return f"{self.account_no} {self.account_name}"


class WaterMeter(models.Model):
    id = fields.IntField(pk=True)
    member = fields.ForeignKeyField("models.WaterMember", related_name="meters", on_delete=fields.CASCADE, index=True)
    meter_number = fields.CharField(max_length=64, unique=True, index=True)
    meter_status = fields.CharField(max_length=24, default="active", index=True)
    is_billing_active = fields.BooleanField(default=True)
    multiplier = fields.DecimalField(max_digits=10, decimal_places=4, default=1)

    initial_reading = fields.DecimalField(max_digits=14, decimal_places=3, default=0)
    last_reading = fields.DecimalField(max_digits=14, decimal_places=3, null=True)
    last_reading_date = fields.DatetimeField(null=True)

    meter_brand = fields.CharField(max_length=64, default="")
    meter_model = fields.CharField(max_length=64, default="")
    meter_size = fields.CharField(max_length=16, default="")

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "water_meters"

    @property
    def is_billable(self) -> bool:
        return self.meter_status == "active" and self.is_billing_active

    def __str__(self) -> str:
        return self.meter_number


class WaterReading(models.Model):
    """One reading per meter per billing period."""
    id = fields.IntField(pk=True)
    period_key = fields.CharField(max_length=7, index=True)  # YYYY-MM
    member = fields.ForeignKeyField("models.WaterMember", related_name="readings", on_delete=fields.CASCADE, index=True)
    meter = fields.ForeignKeyField("models.WaterMeter", related_name="readings", on_delete=fields.CASCADE, index=True)
    meter_number = fields.CharField(max_length=64, index=True)

    previous_reading = fields.DecimalField(max_digits=14, decimal_places=3)
    present_reading = fields.DecimalField(max_digits=14, decimal_places=3)
    raw_consumed = fields.DecimalField(max_digits=14, decimal_places=3)
    multiplier = fields.DecimalField(max_digits=10, decimal_places=4, default=1)
    consumed = fields.DecimalField(max_digits=14, decimal_places=3)

    read_at = fields.DatetimeField(index=True)
    read_by = fields.CharField(max_length=64, default="")
    reading_type = fields.CharField(max_length=16, default="manual")  # manual | mobile_app | estimated

    class Meta:
        table = "water_readings"
        unique_together = ("period_key", "meter_number")


# ========================
# Bills & payments
# ========================
class WaterBill(models.Model):
    """
    One bill per member per period. Tariff tier, member flags and the
    due/penalty settings are copies taken at computation time; later settings
    edits never reach an existing bill.
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    member = fields.ForeignKeyField("models.WaterMember", related_name="bills", on_delete=fields.RESTRICT, index=True)
    account_no = fields.CharField(max_length=32, index=True)
    account_name = fields.CharField(max_length=200)
    classification = fields.CharField(max_length=16, index=True)
    period_key = fields.CharField(max_length=7, index=True)

    meter_reading_lines = fields.JSONField(default=list)
    total_consumed = fields.DecimalField(max_digits=14, decimal_places=3, default=0)

    tariff_used = fields.JSONField(null=True)
    breakdown = fields.JSONField(null=True)
    base_amount = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount_reason = fields.CharField(max_length=128, default="")
    final_amount = fields.DecimalField(max_digits=12, decimal_places=2, default=0)

    # settings snapshot (immutable after creation)
    settings_version = fields.IntField(default=1)
    due_day_used = fields.IntField()
    grace_days_used = fields.IntField()
    penalty_type_used = fields.CharField(max_length=16)
    penalty_value_used = fields.DecimalField(max_digits=12, decimal_places=2)
    due_date = fields.DateField(index=True)

    penalty_applied = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    penalty_computed_at = fields.DatetimeField(null=True)
    total_due = fields.DecimalField(max_digits=12, decimal_places=2, default=0)

    status = fields.CharField(max_length=8, default=BILL_UNPAID, index=True)
    paid_at = fields.DatetimeField(null=True)
    receipt_number = fields.CharField(max_length=64, null=True)

    needs_tariff_review = fields.BooleanField(default=False, index=True)
    member_snapshot = fields.JSONField(null=True)

    remarks = fields.TextField(default="")
    created_by = fields.CharField(max_length=64, default="")
    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "water_bills"
        unique_together = ("member", "period_key")

    def __str__(self) -> str:
        return f"Bill({self.account_no} {self.period_key} {self.status})"


class WaterPayment(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    bill = fields.OneToOneField("models.WaterBill", related_name="payment", on_delete=fields.RESTRICT)
    account_no = fields.CharField(max_length=32, index=True)
    period_key = fields.CharField(max_length=7, index=True)

    receipt_number = fields.CharField(max_length=64, unique=True, index=True)  # OR No
    method = fields.CharField(max_length=32)
    amount_paid = fields.DecimalField(max_digits=12, decimal_places=2)
    discount_applied = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    penalty_applied = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    classification = fields.CharField(max_length=16, default="", index=True)

    received_by = fields.CharField(max_length=64, default="")
    paid_at = fields.DatetimeField(index=True)
    notes = fields.TextField(default="")

    class Meta:
        table = "water_payments"
