"""Account and dashboard serializers for the API v1."""
from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

User = get_user_model()


class MeSerializer(serializers.ModelSerializer):
    """The authenticated user's own profile (GET/PATCH).

    ``is_superuser`` is exposed here only, since it is the caller's own data.
    """

    company_name = serializers.CharField(source="company.name", read_only=True, default=None)
    role_display = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = [
            "id", "email", "first_name", "last_name",
            "role", "role_display", "company", "company_name",
            "is_active", "is_superuser",
        ]
        read_only_fields = ["id", "email", "role", "company", "is_active", "is_superuser"]


class DealflowTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Adds the user profile to the token response."""

    def validate(self, attrs):
        data = super().validate(attrs)
        data["user"] = MeSerializer(self.user).data
        return data


class DashboardStatsSerializer(serializers.Serializer):
    contacts_count = serializers.IntegerField()
    open_deals = serializers.IntegerField()
    total_deal_value = serializers.DecimalField(max_digits=16, decimal_places=2, coerce_to_string=False)
    activities_due = serializers.IntegerField()
