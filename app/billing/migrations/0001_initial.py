import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("clinic", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Invoice",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "invoice_number",
                    models.CharField(
                        help_text="Human-readable invoice number",
                        max_length=32,
                        unique=True,
                    ),
                ),
                ("issue_date", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "subtotal",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14),
                ),
                (
                    "discount",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14),
                ),
                (
                    "tax",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14),
                ),
                (
                    "total_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="subtotal - discount + tax",
                        max_digits=14,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing_online", "Processing Online"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the invoice (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "appointment",
                    models.OneToOneField(
                        help_text="Appointment this invoice bills",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoice",
                        to="clinic.appointment",
                    ),
                ),
            ],
            options={
                "ordering": ["-issue_date"],
                "indexes": [
                    models.Index(
                        fields=["status", "issue_date"],
                        name="billing_inv_status_issued_idx",
                    )
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            ("subtotal__gte", 0),
                            ("discount__gte", 0),
                            ("tax__gte", 0),
                            ("total_amount__gte", 0),
                        ),
                        name="invoice_amounts_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "total_amount",
                                models.F("subtotal") - models.F("discount") + models.F("tax"),
                            )
                        ),
                        name="invoice_total_matches_components",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        choices=[
                            ("cash", "Cash"),
                            ("vnpay", "VNPay"),
                            ("momo", "MoMo"),
                            ("zalopay", "ZaloPay"),
                            ("bank_transfer", "Bank Transfer"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Amount charged; immutable once saved",
                        max_digits=14,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("success", "Success"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the payment (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                (
                    "transaction_id",
                    models.CharField(
                        blank=True,
                        help_text="Gateway transaction number (vnp_TransactionNo)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Client or server generated key preventing duplicate online payments",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                ("gateway_response", models.JSONField(blank=True, null=True)),
                (
                    "refund_amount",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14),
                ),
                ("refund_date", models.DateTimeField(blank=True, null=True)),
                ("refund_reason", models.TextField(blank=True, default="")),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="billing.invoice",
                    ),
                ),
                (
                    "received_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Staff member who received a cash payment",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="received_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["invoice", "status"],
                        name="billing_pay_invoice_status_idx",
                    ),
                    models.Index(
                        fields=["status", "updated_at"],
                        name="billing_pay_status_updated_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="payment_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("refund_amount__gte", 0),
                            ("refund_amount__lte", models.F("amount")),
                        ),
                        name="payment_refund_within_amount",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("idempotency_key__isnull", True), ("payment_method", "cash")),
                            models.Q(
                                models.Q(("payment_method", "cash"), _negated=True),
                                ("idempotency_key__isnull", False),
                            ),
                            _connector="OR",
                        ),
                        name="payment_idempotency_key_online_only",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentGatewayArchive",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "order_reference",
                    models.CharField(blank=True, db_index=True, default="", max_length=64),
                ),
                ("gateway_name", models.CharField(max_length=32)),
                (
                    "interaction",
                    models.CharField(
                        choices=[
                            ("callback", "Return URL Callback"),
                            ("ipn", "Instant Payment Notification"),
                            ("refund", "Refund"),
                            ("query", "Transaction Query"),
                        ],
                        max_length=20,
                    ),
                ),
                ("gateway_response", models.JSONField(default=dict)),
                ("transaction_timestamp", models.DateTimeField(blank=True, null=True)),
                ("archived_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "payment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="gateway_archives",
                        to="billing.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Gateway Archive",
                "verbose_name_plural": "Payment Gateway Archive",
                "ordering": ["-archived_at"],
                "indexes": [
                    models.Index(
                        fields=["payment", "archived_at"],
                        name="billing_archive_payment_idx",
                    )
                ],
            },
        ),
    ]
