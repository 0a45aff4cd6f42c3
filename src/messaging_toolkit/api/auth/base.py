"""
Authentication provider abstractions.

An 'AuthProvider' integrates with a FastAPI application to identify the current
user on every request. The messaging core never authenticates: it trusts the
user id the provider returns and only checks conversation membership.

'HeaderAuthProvider' reads the id from a header set by a trusted gateway.
"""

from abc import ABC, abstractmethod

from fastapi import FastAPI, HTTPException, Request

USER_ID_HEADER = "X-User-Id"


class AuthProvider(ABC):
    """
    Abstract base class for authentication backends.

    Implementors must supply a FastAPI dependency that resolves to the current
    user ID ('get_current_user_id') and a setup hook that registers any routes
    and middleware the provider needs ('bind_to_app').
    """

    @abstractmethod
    def get_current_user_id(self, request: Request) -> str:
        """FastAPI dependency that returns the authenticated user's ID.

        Raise 'HTTPException' with status 401 if the request is not authenticated.
        """
        pass

    @abstractmethod
    def bind_to_app(self, app: FastAPI) -> None:
        pass


class HeaderAuthProvider(AuthProvider):
    def __init__(self, header_name: str = USER_ID_HEADER):
        self.header_name = header_name

    def get_current_user_id(self, request: Request) -> str:
        user_id = request.headers.get(self.header_name, "").strip()
        if not user_id:
            raise HTTPException(status_code=401, detail=f"Missing {self.header_name} header")
        return user_id

    def bind_to_app(self, app: FastAPI) -> None:
        pass
