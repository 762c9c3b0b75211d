"""Token endpoints: JWT issued in the body and mirrored into HttpOnly cookies."""

import logging

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from api.v1.serializers import DealflowTokenObtainPairSerializer

logger = logging.getLogger("dealflow")


class SafeScopedRateThrottle(ScopedRateThrottle):
    """Scoped throttle falling back to 5/min when the scope has no rate."""

    def get_rate(self):
        try:
            return super().get_rate()
        except ImproperlyConfigured:
            logger.warning("Throttle scope '%s' not configured, using 5/min.", self.scope)
            return "5/min"


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": getattr(settings, "JWT_AUTH_COOKIE_SECURE", not settings.DEBUG),
        "samesite": getattr(settings, "JWT_AUTH_COOKIE_SAMESITE", "Lax"),
        "path": getattr(settings, "JWT_AUTH_COOKIE_PATH", "/"),
        "domain": getattr(settings, "JWT_AUTH_COOKIE_DOMAIN", None),
    }


def _set_auth_cookies(response: Response, *, access: str, refresh: str | None) -> None:
    options = _cookie_options()
    lifetimes = settings.SIMPLE_JWT
    response.set_cookie(
        getattr(settings, "JWT_AUTH_COOKIE", "access_token"),
        access,
        max_age=int(lifetimes["ACCESS_TOKEN_LIFETIME"].total_seconds()),
        **options,
    )
    if refresh:
        response.set_cookie(
            getattr(settings, "JWT_AUTH_REFRESH_COOKIE", "refresh_token"),
            refresh,
            max_age=int(lifetimes["REFRESH_TOKEN_LIFETIME"].total_seconds()),
            **options,
        )


def _clear_auth_cookies(response: Response) -> None:
    options = _cookie_options()
    for name in (
        getattr(settings, "JWT_AUTH_COOKIE", "access_token"),
        getattr(settings, "JWT_AUTH_REFRESH_COOKIE", "refresh_token"),
    ):
        response.delete_cookie(name, path=options["path"], domain=options["domain"])


class CookieTokenObtainPairView(TokenObtainPairView):
    """Log in with email/password; returns the profile and sets auth cookies."""

    serializer_class = DealflowTokenObtainPairSerializer
    throttle_classes = [SafeScopedRateThrottle]
    throttle_scope = "auth_burst"
    permission_classes = [permissions.AllowAny]

    def post(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        validated = serializer.validated_data

        data = {"user": validated["user"]}
        if getattr(settings, "JWT_RETURN_TOKENS_IN_BODY", True):
            data.update({"access": validated["access"], "refresh": validated["refresh"]})

        response = Response(data, status=status.HTTP_200_OK)
        _set_auth_cookies(response, access=validated["access"], refresh=validated["refresh"])
        logger.info("User %s logged in", validated["user"]["email"])
        return response


class CookieTokenRefreshView(TokenRefreshView):
    """Refresh the access token from the body or the refresh cookie."""

    throttle_classes = [SafeScopedRateThrottle]
    throttle_scope = "auth_sustained"
    permission_classes = [permissions.AllowAny]

    def post(self, request, *args, **kwargs):
        payload = request.data.copy()
        if not payload.get("refresh"):
            cookie_token = request.COOKIES.get(
                getattr(settings, "JWT_AUTH_REFRESH_COOKIE", "refresh_token")
            )
            if cookie_token:
                payload["refresh"] = cookie_token

        serializer = self.get_serializer(data=payload)
        serializer.is_valid(raise_exception=True)
        access = serializer.validated_data["access"]
        refresh = serializer.validated_data.get("refresh", payload.get("refresh"))

        data = {"detail": "Jeton renouvele."}
        if getattr(settings, "JWT_RETURN_TOKENS_IN_BODY", True):
            data.update({"access": access, "refresh": refresh})

        response = Response(data, status=status.HTTP_200_OK)
        _set_auth_cookies(response, access=access, refresh=refresh)
        return response


class LogoutAPIView(APIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        response = Response(status=status.HTTP_204_NO_CONTENT)
        _clear_auth_cookies(response)
        return response
