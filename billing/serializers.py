from rest_framework import serializers

from .models import ApiKey


class PlanPricePayload(serializers.Serializer):
    plan = serializers.CharField(max_length=32, error_messages={"required": "Plan and price are required."})
    price = serializers.DecimalField(
        max_digits=10, decimal_places=2, error_messages={"required": "Plan and price are required."}
    )


class CapturePayload(serializers.Serializer):
    orderId = serializers.CharField(max_length=128, error_messages={
        "required": "Order ID is required.",
        "blank": "Order ID is required.",
    })


class ApiKeySummary(serializers.ModelSerializer):
    apiKey = serializers.CharField(source="key_value", read_only=True)
    remaining = serializers.IntegerField(read_only=True)

    class Meta:
        model = ApiKey
        fields = [
            "apiKey", "key_prefix", "plan", "status",
            "requests_used", "requests_limit", "remaining",
            "expires_at", "created_at",
        ]
