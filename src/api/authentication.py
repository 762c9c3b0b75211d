"""Custom authentication backend for the API."""

from django.conf import settings
from django.middleware.csrf import CsrfViewMiddleware
from rest_framework import exceptions
from rest_framework.request import Request
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError


class CookieJWTAuthentication(JWTAuthentication):
    """JWT auth reading the ``Authorization`` header first, then a cookie.

    An invalid header token is a 401. An invalid or expired cookie token
    leaves the request anonymous so ``AllowAny`` endpoints such as the
    token refresh keep working with a stale access cookie. Cookie-based
    requests must pass the CSRF check.
    """

    def _enforce_csrf(self, request: Request) -> None:
        django_request = request._request
        check = CsrfViewMiddleware(lambda req: None)
        check.process_request(django_request)
        reason = check.process_view(django_request, None, (), {})
        if reason:
            raise exceptions.PermissionDenied(f"CSRF invalide : {reason}")

    def authenticate(self, request: Request):
        header = self.get_header(request)
        if header is not None:
            raw_token = self.get_raw_token(header)
            if raw_token is not None:
                validated_token = self.get_validated_token(raw_token)
                return self.get_user(validated_token), validated_token

        raw_cookie = request.COOKIES.get(getattr(settings, "JWT_AUTH_COOKIE", "access_token"))
        if not raw_cookie:
            return None
        try:
            validated_token = self.get_validated_token(raw_cookie)
        except (InvalidToken, TokenError):
            return None

        self._enforce_csrf(request)
        return self.get_user(validated_token), validated_token
