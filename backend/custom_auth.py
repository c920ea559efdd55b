from typing import Optional, Tuple

from rest_framework import HTTP_HEADER_ENCODING
from rest_framework.request import Request
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.tokens import Token

ACCESS_TOKEN_COOKIE = "access_token"


class CookieJWTAuthentication(JWTAuthentication):
    """
    JWT authentication reading the access token from the Authorization header,
    or from the ``access_token`` cookie when the header is absent.
    """

    www_authenticate_realm = "api"
    media_type = "application/json"

    def authenticate(self, request: Request) -> Optional[Tuple[object, Token]]:
        if self.get_header(request) is not None:
            return super().authenticate(request)

        cookie = request.COOKIES.get(ACCESS_TOKEN_COOKIE) or None
        if cookie is None:
            return None

        validated_token = self.get_validated_token(cookie.encode(HTTP_HEADER_ENCODING))
        return self.get_user(validated_token), validated_token
