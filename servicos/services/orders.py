import logging

from django.db import transaction

from .. import errors
from ..errors import store_errors
from ..models import Client, Observation, ServiceOrder, ServiceOrderLog, User
from ..permissions import require_admin, require_privileged
from . import create_order_log, get_or_not_found, orders_visible_to
from .numbering import next_order_number

logger = logging.getLogger(__name__)

ORDER_FIELDS = (
    "opening_date",
    "client_id",
    "client_name",
    "client_contact",
    "client_address",
    "service_description",
    "sale_value",
    "urgency",
    "assigned_worker_id",
    "deadline",
    "service_start_date",
    "service_end_date",
)


def _client_snapshot(client_id):
    client = get_or_not_found(Client.objects.all(), client_id, "Cliente não encontrado.")
    return {
        "client_id": client.pk,
        "client_name": client.name,
        "client_contact": client.contact,
        "client_address": client.address,
    }


def _validate_order_fields(data):
    if "urgency" in data and data["urgency"] not in ServiceOrder.Urgency.values:
        raise errors.ValidationError("Urgência inválida.")
    if data.get("sale_value") is not None and data["sale_value"] < 0:
        raise errors.ValidationError("O valor de venda não pode ser negativo.")
    start, end = data.get("service_start_date"), data.get("service_end_date")
    if start and end and start > end:
        raise errors.ValidationError("Data de início não pode ser maior que a data final.")


def create_order(context, **data):
    require_privileged(context, "Apenas administradores e gerentes podem abrir ordens de serviço.")
    unknown = set(data) - set(ORDER_FIELDS) - {"status"}
    if unknown:
        raise errors.ValidationError(f"Campos desconhecidos: {', '.join(sorted(unknown))}.")
    if not (data.get("service_description") or "").strip():
        raise errors.ValidationError("Descreva o serviço.")
    if not data.get("client_id") and not (data.get("client_name") or "").strip():
        raise errors.ValidationError("Informe o cliente.")
    status = data.pop("status", None) or ServiceOrder.Status.PENDING
    if status not in (ServiceOrder.Status.RECEIVED, ServiceOrder.Status.PENDING):
        raise errors.ValidationError("Uma nova OS deve começar como 'Recebido' ou 'Pendente'.")
    _validate_order_fields(data)
    with store_errors("create_order"):
        with transaction.atomic():
            if data.get("client_id"):
                data.update(_client_snapshot(data["client_id"]))
            if data.get("assigned_worker_id") and not User.objects.filter(pk=data["assigned_worker_id"]).exists():
                raise errors.NotFoundError("Operário não encontrado.")
            data = {key: value for key, value in data.items() if value is not None}
            order = ServiceOrder.objects.create(
                order_number=next_order_number(),
                status=status,
                created_by_id=context.id,
                **data,
            )
            create_order_log(order, context, ServiceOrderLog.Action.CREATE, to_status=status)
            if order.assigned_worker_id:
                create_order_log(order, context, ServiceOrderLog.Action.ASSIGN)
    logger.info("Order %s created by %s", order.order_number, context.id)
    return order


def update_order(context, order_id, **fields):
    """Atualiza campos descritivos; o status segue pela máquina de estados."""
    require_privileged(context, "Apenas administradores e gerentes podem editar ordens de serviço.")
    if "status" in fields:
        raise errors.ValidationError("Use a mudança de status da OS para alterar o status.")
    unknown = set(fields) - set(ORDER_FIELDS)
    if unknown:
        raise errors.ValidationError(f"Campos não editáveis: {', '.join(sorted(unknown))}.")
    _validate_order_fields(fields)
    with store_errors("update_order"):
        with transaction.atomic():
            order = get_or_not_found(ServiceOrder.objects.all(), order_id, "Ordem de serviço não encontrada.")
            if order.status == ServiceOrder.Status.INVOICED:
                raise errors.ConflictError("Uma OS faturada não pode ser alterada.")
            if fields.get("client_id") and fields["client_id"] != order.client_id:
                fields.update(_client_snapshot(fields["client_id"]))
            previous_worker = order.assigned_worker_id
            for name, value in fields.items():
                setattr(order, name, value)
            order.save(update_fields=list(fields) + ["updated_at"])
            if "assigned_worker_id" in fields and previous_worker != order.assigned_worker_id:
                create_order_log(order, context, ServiceOrderLog.Action.ASSIGN)
            else:
                create_order_log(order, context, ServiceOrderLog.Action.EDIT)
    return order


def delete_order(context, order_id):
    require_admin(context, "Apenas administradores podem excluir ordens de serviço.")
    with store_errors("delete_order"):
        with transaction.atomic():
            order = get_or_not_found(
                ServiceOrder.objects.select_for_update(), order_id, "Ordem de serviço não encontrada."
            )
            invoiced = order.status == ServiceOrder.Status.INVOICED or hasattr(order, "invoice_snapshot")
            if invoiced:
                raise errors.ConflictError("Ordens de serviço faturadas não podem ser excluídas.")
            number = order.order_number
            order.delete()
    logger.info("Order %s deleted by %s", number, context.id)


def add_observation(context, order_id, text):
    if not (text or "").strip():
        raise errors.ValidationError("Escreva a observação.")
    with store_errors("add_observation"):
        order = get_or_not_found(orders_visible_to(context), order_id, "Ordem de serviço não encontrada.")
        return Observation.objects.create(order=order, user_id=context.id, text=text.strip())
