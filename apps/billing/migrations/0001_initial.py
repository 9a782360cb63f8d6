# Generated manually for the AFIP authorization models

import uuid

import django.db.models.deletion
from django.db import migrations, models


ERROR_KIND_CHOICES = [
    ("configuration_missing", "Configuration Missing"),
    ("signing_failure", "Signing Failure"),
    ("ticket_already_valid", "Ticket Already Valid"),
    ("certificate_expired", "Certificate Expired"),
    ("certificate_invalid", "Certificate Invalid"),
    ("clock_desync", "Clock Desync"),
    ("identifier_not_authorized", "Identifier Not Authorized"),
    ("service_unreachable", "Service Unreachable"),
    ("timeout", "Timeout"),
    ("business_rejection", "Business Rejection"),
    ("sequence_conflict", "Sequence Conflict"),
    ("invalid_voucher", "Invalid Voucher"),
    ("unknown", "Unknown"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="AfipConnection",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tenant_id", models.CharField(db_index=True, help_text="Owning tenant", max_length=64)),
                (
                    "branch_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Branch this connection is scoped to (empty for tenant-wide)",
                        max_length=64,
                    ),
                ),
                ("name", models.CharField(max_length=100)),
                ("description", models.TextField(blank=True, default="")),
                ("cuit", models.CharField(help_text="Taxpayer identifier (11 digits)", max_length=11)),
                (
                    "environment",
                    models.CharField(
                        choices=[("testing", "Testing"), ("production", "Production")],
                        default="testing",
                        max_length=20,
                    ),
                ),
                (
                    "wsaa_url",
                    models.URLField(blank=True, default="", help_text="Override for the WSAA WSDL", max_length=255),
                ),
                (
                    "wsfe_url",
                    models.URLField(blank=True, default="", help_text="Override for the WSFEv1 WSDL", max_length=255),
                ),
                ("certificate", models.TextField(blank=True, default="", help_text="PEM certificate issued by AFIP")),
                (
                    "private_key",
                    models.TextField(blank=True, default="", help_text="PEM private key for the certificate"),
                ),
                ("timeout_seconds", models.PositiveIntegerField(default=30)),
                ("ta_token", models.TextField(blank=True, default="")),
                ("ta_sign", models.TextField(blank=True, default="")),
                ("ta_expires_at", models.DateTimeField(blank=True, null=True)),
                ("last_test_at", models.DateTimeField(blank=True, null=True)),
                ("last_test_status", models.CharField(blank=True, default="", max_length=20)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "AFIP Connection",
                "verbose_name_plural": "AFIP Connections",
                "db_table": "afip_connections",
                "indexes": [models.Index(fields=["tenant_id", "is_active"], name="afip_conn_tenant_active_idx")],
            },
        ),
        migrations.CreateModel(
            name="VoucherSequence",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("tenant_id", models.CharField(db_index=True, max_length=64)),
                (
                    "voucher_type_code",
                    models.PositiveSmallIntegerField(help_text="AFIP CbteTipo (1 = Factura A, 6 = Factura B...)"),
                ),
                ("branch_id", models.CharField(blank=True, default="", max_length=64)),
                ("sales_point", models.PositiveIntegerField(help_text="AFIP PtoVta (1-99999)")),
                ("next_number", models.PositiveBigIntegerField(default=1)),
                ("requires_cae", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "afip_connection",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="sequences",
                        to="billing.afipconnection",
                    ),
                ),
            ],
            options={
                "verbose_name": "Voucher Sequence",
                "verbose_name_plural": "Voucher Sequences",
                "db_table": "afip_voucher_sequences",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("tenant_id", "voucher_type_code", "branch_id"),
                        name="unique_voucher_sequence_per_branch",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="FiscalVoucher",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tenant_id", models.CharField(db_index=True, max_length=64)),
                (
                    "sale_reference",
                    models.CharField(blank=True, default="", help_text="Identifier of the sale", max_length=100),
                ),
                ("voucher_type_code", models.PositiveSmallIntegerField()),
                ("sales_point", models.PositiveIntegerField()),
                ("number", models.CharField(help_text="Formatted as PPPPP-NNNNNNNN", max_length=14)),
                ("document_date", models.DateField()),
                ("customer_doc_type", models.PositiveSmallIntegerField(default=99)),
                ("customer_doc_number", models.CharField(default="0", max_length=20)),
                ("customer_vat_condition", models.PositiveSmallIntegerField(default=5)),
                ("net_amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("vat_amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=14)),
                (
                    "lines",
                    models.JSONField(blank=True, default=list, help_text="Line snapshot used for the VAT breakdown"),
                ),
                (
                    "authorization_status",
                    models.CharField(
                        choices=[
                            ("not_required", "Not Required"),
                            ("pending", "Pending"),
                            ("authorized", "Authorized"),
                            ("rejected", "Rejected"),
                            ("error", "Error"),
                            ("skipped", "Skipped"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("cae", models.CharField(blank=True, default="", max_length=14)),
                ("cae_expiration", models.DateField(blank=True, null=True)),
                ("authorized_at", models.DateTimeField(blank=True, null=True)),
                ("error_kind", models.CharField(blank=True, choices=ERROR_KIND_CHOICES, default="", max_length=40)),
                ("error_code", models.CharField(blank=True, default="", max_length=20)),
                ("error_message", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "sequence",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="vouchers",
                        to="billing.vouchersequence",
                    ),
                ),
            ],
            options={
                "verbose_name": "Fiscal Voucher",
                "verbose_name_plural": "Fiscal Vouchers",
                "db_table": "afip_fiscal_vouchers",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["tenant_id", "number"], name="afip_voucher_tenant_num_idx"),
                    models.Index(fields=["authorization_status", "created_at"], name="afip_voucher_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("tenant_id", "voucher_type_code", "number"),
                        name="unique_fiscal_voucher_number",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="AuthorizationAttempt",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("voucher_number", models.CharField(max_length=14)),
                ("sales_point", models.PositiveIntegerField()),
                ("succeeded", models.BooleanField(default=False)),
                ("cae", models.CharField(blank=True, default="", max_length=14)),
                ("cae_expiration", models.DateField(blank=True, null=True)),
                ("error_kind", models.CharField(blank=True, choices=ERROR_KIND_CHOICES, default="", max_length=40)),
                ("error_code", models.CharField(blank=True, default="", max_length=20)),
                ("error_message", models.TextField(blank=True, default="")),
                ("raw_message", models.TextField(blank=True, default="")),
                ("observations", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "voucher",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="attempts",
                        to="billing.fiscalvoucher",
                    ),
                ),
            ],
            options={
                "verbose_name": "Authorization Attempt",
                "verbose_name_plural": "Authorization Attempts",
                "db_table": "afip_authorization_attempts",
                "ordering": ["-created_at"],
            },
        ),
    ]
