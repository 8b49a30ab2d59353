"""Chamados de ordens de serviço.

Qualquer pessoa que enxerga a OS pode abrir um chamado; apenas gerentes e
administradores marcam como resolvido.
"""
import logging

from django.db import transaction
from django.utils import timezone

from .. import errors
from ..errors import store_errors
from ..models import ServiceOrderCall
from ..permissions import is_privileged, require_privileged
from . import get_or_not_found, orders_visible_to

logger = logging.getLogger(__name__)


def open_call(context, order_id, reason):
    if not (reason or "").strip():
        raise errors.ValidationError("Informe o motivo do chamado.")
    with store_errors("open_call"):
        order = get_or_not_found(orders_visible_to(context), order_id, "Ordem de serviço não encontrada.")
        call = ServiceOrderCall.objects.create(order=order, reason=reason.strip(), opened_by_id=context.id)
    logger.info("Call %s opened on order %s by %s", call.pk, order.order_number, context.id)
    return call


def list_calls(context, resolved=None):
    """Chamados do mais recente para o mais antigo."""
    qs = ServiceOrderCall.objects.select_related("order").order_by("-created_at", "-id")
    if not is_privileged(context):
        qs = qs.filter(order__in=orders_visible_to(context))
    if resolved is not None:
        qs = qs.filter(resolved=resolved)
    return qs


def resolve_call(context, call_id, now=None):
    require_privileged(context, "Apenas administradores e gerentes podem resolver chamados.")
    now = now or timezone.now()
    with store_errors("resolve_call"):
        with transaction.atomic():
            call = get_or_not_found(
                ServiceOrderCall.objects.select_for_update().select_related("order"),
                call_id,
                "Chamado não encontrado.",
            )
            if call.resolved:
                raise errors.ConflictError("Este chamado já foi resolvido.")
            call.resolved = True
            call.resolved_by_id = context.id
            call.resolved_at = now
            call.save(update_fields=["resolved", "resolved_by", "resolved_at"])
    logger.info("Call %s on order %s resolved by %s", call.pk, call.order.order_number, context.id)
    return call
