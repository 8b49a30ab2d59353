from decimal import Decimal, InvalidOperation
import logging

from django.db import transaction
from django.db.models import F

from .. import errors
from ..errors import store_errors
from ..models import InventoryItem, InventoryMovement, ServiceOrderTask, TaskProductUsage
from ..permissions import is_privileged
from . import get_or_not_found

logger = logging.getLogger(__name__)


def _quantity(value) -> Decimal:
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise errors.ValidationError("Quantidade inválida.")
    if quantity <= 0:
        raise errors.ValidationError("A quantidade deve ser maior que zero.")
    return quantity


def record_product_usage(context, task_id, item_id, quantity):
    """Lança o consumo de material de uma tarefa e baixa o estoque."""
    quantity = _quantity(quantity)
    with store_errors("record_product_usage"):
        with transaction.atomic():
            task = get_or_not_found(
                ServiceOrderTask.objects.select_related("order"), task_id, "Tarefa não encontrada."
            )
            if not is_privileged(context) and task.assigned_worker_id != context.id:
                raise errors.PermissionError("Esta tarefa não está atribuída a você.")
            item = get_or_not_found(InventoryItem.objects.all(), item_id, "Item de estoque não encontrado.")
            updated = InventoryItem.objects.filter(pk=item.pk, current_quantity__gte=quantity).update(
                current_quantity=F("current_quantity") - quantity
            )
            if not updated:
                raise errors.ConflictError(
                    f"Quantidade acima do estoque disponível ({item.current_quantity})."
                )
            usage = TaskProductUsage.objects.create(
                task=task, item=item, quantity_used=quantity, created_by_id=context.id
            )
            InventoryMovement.objects.create(
                item=item,
                movement_type=InventoryMovement.Type.OUT,
                quantity=quantity,
                user_id=context.id,
                service_order=task.order,
            )
    logger.info("Task %s used %s of item %s", task.pk, quantity, item.pk)
    return usage


def register_stock_entry(context, item_id, quantity):
    if not is_privileged(context):
        raise errors.PermissionError("Apenas administradores e gerentes podem lançar entradas de estoque.")
    quantity = _quantity(quantity)
    with store_errors("register_stock_entry"):
        with transaction.atomic():
            item = get_or_not_found(InventoryItem.objects.all(), item_id, "Item de estoque não encontrado.")
            InventoryItem.objects.filter(pk=item.pk).update(current_quantity=F("current_quantity") + quantity)
            movement = InventoryMovement.objects.create(
                item=item, movement_type=InventoryMovement.Type.IN, quantity=quantity, user_id=context.id
            )
    return movement
