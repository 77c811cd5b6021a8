from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from billing.models import ApiKey

User = get_user_model()


class RegisterSerializer(serializers.Serializer):
    """Sign-up for the portal. The normalized email is also the login username."""

    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)
    password2 = serializers.CharField(write_only=True, trim_whitespace=False)

    def validate_email(self, value):
        email = value.strip().lower()
        if User.objects.filter(username__iexact=email).exists() or User.objects.filter(email__iexact=email).exists():
            raise serializers.ValidationError("Email already registered")
        return email

    def validate(self, attrs):
        if attrs["password"] != attrs["password2"]:
            raise serializers.ValidationError({"password": "Passwords do not match."})
        validate_password(attrs["password"], user=User(username=attrs["email"], email=attrs["email"]))
        return attrs

    def create(self, validated_data):
        email = validated_data["email"]
        return User.objects.create_user(username=email, email=email, password=validated_data["password"])


class ProfileSerializer(serializers.ModelSerializer):
    """The caller plus a short view of the key currently granting search access."""

    plan = serializers.SerializerMethodField()
    remaining = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ["id", "email", "paypal_payer_id", "plan", "remaining"]

    def _active_key(self, user):
        if not hasattr(self, "_key_cache"):
            self._key_cache = ApiKey.objects.owned_by(user).active().first()
        return self._key_cache

    def get_plan(self, user):
        key = self._active_key(user)
        return key.plan if key else None

    def get_remaining(self, user):
        key = self._active_key(user)
        return key.remaining if key else 0
