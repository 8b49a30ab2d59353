from typing import Optional

from django.http import HttpRequest

from .permissions import CallerContext


class CallerContextMiddleware:
    """Anexa o contexto do usuário autenticado à requisição."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request: HttpRequest):
        request.caller: Optional[CallerContext] = None
        user = getattr(request, "user", None)
        if user and user.is_authenticated:
            request.caller = CallerContext.from_user(user)
        return self.get_response(request)
