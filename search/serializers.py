import re

from rest_framework import serializers

# letters, digits and the punctuation ES allows in index names, patterns and lists
INDEX_NAME_RE = re.compile(r"^[A-Za-z0-9_.*,+-]+$")


class SearchPayload(serializers.Serializer):
    query = serializers.CharField(max_length=1000, error_messages={
        "required": "Query is required.",
        "blank": "Query is required.",
    })
    index = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)

    def validate_index(self, value):
        value = (value or "").strip()
        if not value:
            return None
        # single path segment of the ES URL
        if ".." in value or not INDEX_NAME_RE.match(value):
            raise serializers.ValidationError("Invalid index name.")
        return value
