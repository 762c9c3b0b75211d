"""Profile and dashboard API views."""
import logging

from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from api.v1.permissions import IsCompanyMember, resolve_company
from api.v1.serializers import DashboardStatsSerializer, MeSerializer
from pipelines.analytics import compute_dashboard_stats

logger = logging.getLogger("dealflow")


class MeView(APIView):
    """
    GET /api/v1/auth/me/ - return the authenticated user's profile.
    PATCH /api/v1/auth/me/ - update first_name, last_name.
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(MeSerializer(request.user).data)

    def patch(self, request):
        serializer = MeSerializer(request.user, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)


class DashboardView(APIView):
    """GET /api/v1/dashboard/ - headline counters of the caller's company."""

    permission_classes = [IsAuthenticated, IsCompanyMember]

    def get(self, request):
        stats = compute_dashboard_stats(resolve_company(request))
        return Response(DashboardStatsSerializer(stats).data)
