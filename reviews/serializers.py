from rest_framework import serializers

from .models import MAX_RATING, MIN_RATING, Review

MIN_CONTENT_LENGTH = 10


class ReviewPayload(serializers.Serializer):
    content = serializers.CharField(max_length=500, error_messages={
        "required": "Please write your review.",
        "blank": "Please write your review.",
    })
    rating = serializers.IntegerField(min_value=MIN_RATING, max_value=MAX_RATING, default=MAX_RATING)

    def validate_content(self, value):
        # CharField already trimmed surrounding whitespace
        if len(value) < MIN_CONTENT_LENGTH:
            raise serializers.ValidationError(f"Review must be at least {MIN_CONTENT_LENGTH} characters long.")
        return value


class ReviewSummary(serializers.ModelSerializer):
    author = serializers.CharField(read_only=True)

    class Meta:
        model = Review
        fields = ["id", "author", "content", "rating", "created_at"]
