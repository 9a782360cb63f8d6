# ===============================================================================
# AFIP API SERIALIZERS - FISCAL VOUCHERS AND CAE AUTHORIZATION 🧾
# ===============================================================================

from decimal import Decimal
from typing import Any, ClassVar

from rest_framework import serializers

from apps.billing.afip.models import AuthorizationAttempt, FiscalVoucher
from apps.billing.afip.qr import build_qr_url
from apps.billing.afip.service import VoucherRequest
from apps.billing.afip.settings import DEFAULT_DOC_NUMBER, DEFAULT_DOC_TYPE, DEFAULT_VAT_CONDITION
from apps.billing.afip.wsfe import VoucherLine

# ===============================================================================
# INPUT SERIALIZERS 📥
# ===============================================================================


class VoucherLineSerializer(serializers.Serializer):
    """One sale line; ``line_total`` includes VAT"""

    description = serializers.CharField(max_length=200, allow_blank=True, default="")
    quantity = serializers.DecimalField(max_digits=12, decimal_places=3, default=Decimal("1"))
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0"))
    line_total = serializers.DecimalField(max_digits=14, decimal_places=2)
    vat_rate = serializers.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0"))
    vat_amount = serializers.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0"))


class VoucherIssueSerializer(serializers.Serializer):
    """Request body for issuing a fiscal voucher"""

    tenant_id = serializers.CharField(max_length=64)
    branch_id = serializers.CharField(max_length=64, allow_blank=True, default="")
    voucher_type_code = serializers.IntegerField(min_value=1)
    sale_reference = serializers.CharField(max_length=100, allow_blank=True, default="")
    document_date = serializers.DateField()
    customer_doc_type = serializers.IntegerField(default=DEFAULT_DOC_TYPE)
    customer_doc_number = serializers.CharField(max_length=20, default=DEFAULT_DOC_NUMBER)
    customer_vat_condition = serializers.IntegerField(default=DEFAULT_VAT_CONDITION)
    net_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    vat_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    lines = VoucherLineSerializer(many=True, required=False, default=list)
    force_without_cae = serializers.BooleanField(default=False)

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        if attrs["net_amount"] + attrs["vat_amount"] != attrs["total_amount"]:
            raise serializers.ValidationError({"total_amount": "Must equal net_amount + vat_amount"})
        return attrs

    def to_request(self) -> VoucherRequest:
        data = self.validated_data
        return VoucherRequest(
            tenant_id=data["tenant_id"],
            branch_id=data["branch_id"],
            voucher_type_code=data["voucher_type_code"],
            sale_reference=data["sale_reference"],
            document_date=data["document_date"],
            customer_doc_type=data["customer_doc_type"],
            customer_doc_number=data["customer_doc_number"],
            customer_vat_condition=data["customer_vat_condition"],
            net_amount=data["net_amount"],
            vat_amount=data["vat_amount"],
            total_amount=data["total_amount"],
            lines=tuple(VoucherLine(**line) for line in data["lines"]),
        )


class ResyncSerializer(serializers.Serializer):
    tenant_id = serializers.CharField(max_length=64, required=False, allow_null=True, default=None)
    limit = serializers.IntegerField(min_value=1, max_value=500, required=False, allow_null=True, default=None)


# ===============================================================================
# OUTPUT SERIALIZERS 📤
# ===============================================================================


class AuthorizationAttemptSerializer(serializers.ModelSerializer):
    class Meta:
        model = AuthorizationAttempt
        fields: ClassVar = [
            "voucher_number",
            "succeeded",
            "cae",
            "cae_expiration",
            "error_kind",
            "error_code",
            "error_message",
            "created_at",
        ]


class FiscalVoucherSerializer(serializers.ModelSerializer):
    """Fiscal voucher with its authorization outcome"""

    qr_url = serializers.SerializerMethodField()
    attempts = AuthorizationAttemptSerializer(many=True, read_only=True)

    class Meta:
        model = FiscalVoucher
        fields: ClassVar = [
            "id",
            "tenant_id",
            "sale_reference",
            "voucher_type_code",
            "sales_point",
            "number",
            "document_date",
            "net_amount",
            "vat_amount",
            "total_amount",
            "authorization_status",
            "cae",
            "cae_expiration",
            "error_kind",
            "error_code",
            "error_message",
            "qr_url",
            "attempts",
            "created_at",
        ]

    def get_qr_url(self, obj: FiscalVoucher) -> str | None:
        connection = obj.sequence.afip_connection
        if connection is None:
            return None
        return build_qr_url(connection.cuit, obj)
