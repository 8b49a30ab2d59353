from django.db.models import Q

from .. import errors
from ..models import ServiceOrder, ServiceOrderLog
from ..permissions import is_privileged


def orders_visible_to(context, qs=None):
    qs = qs if qs is not None else ServiceOrder.objects.all()
    if is_privileged(context):
        return qs
    return qs.filter(Q(assigned_worker_id=context.id) | Q(tasks__assigned_worker_id=context.id)).distinct()


def get_or_not_found(qs, pk, message=None):
    try:
        return qs.get(pk=pk)
    except qs.model.DoesNotExist:
        raise errors.NotFoundError(message)


def create_order_log(order, context, action, from_status="", to_status="", note=""):
    return ServiceOrderLog.objects.create(
        order=order,
        user_id=context.id if context else None,
        action=action,
        from_status=from_status or "",
        to_status=to_status or "",
        note=note,
    )
