"""Ciclo de vida das ordens de serviço.

Todas as mudanças de status passam por aqui. As tabelas abaixo definem o que
cada origem aceita; nenhuma view grava ``status`` diretamente.

* ``MANUAL_TRANSITIONS``: edição manual (apenas administrador/gerente).
* ``WORKFLOW_ACTIONS``: botões do fluxo pós-produção.
* Gatilhos automáticos: ``on_timer_started`` e ``reevaluate_order``.
* ``invoiced`` só é alcançado pela geração de fatura (``mark_invoiced``).
"""
import logging

from django.db import models, transaction
from django.utils import timezone

from .. import errors
from ..errors import store_errors
from ..models import ServiceOrder, ServiceOrderLog, ServiceOrderTask, TaskTimeLog
from ..permissions import require_privileged
from . import create_order_log, get_or_not_found

logger = logging.getLogger(__name__)

Status = ServiceOrder.Status

TERMINAL_STATUSES = frozenset({Status.DELIVERED, Status.INVOICED, Status.COMPLETED, Status.CANCELLED})
PRE_PRODUCTION_STATUSES = frozenset(
    {Status.RECEIVED, Status.PENDING, Status.PLANNING, Status.ON_HOLD, Status.STOPPED}
)
SYSTEM_ONLY_STATUSES = frozenset({Status.INVOICED})
NOT_BILLABLE_STATUSES = frozenset({Status.INVOICED, Status.CANCELLED})
IMMEDIATE_INVOICE_STATUSES = frozenset({Status.AWAITING_INSTALLATION, Status.TO_INVOICE})

MANUAL_TRANSITIONS = {
    Status.RECEIVED: {Status.PENDING, Status.PLANNING, Status.ON_HOLD, Status.CANCELLED},
    Status.PENDING: {Status.PLANNING, Status.PRODUCTION, Status.ON_HOLD, Status.CANCELLED},
    Status.PLANNING: {Status.PENDING, Status.PRODUCTION, Status.ON_HOLD, Status.CANCELLED},
    Status.PRODUCTION: {Status.STOPPED, Status.QUALITY_CONTROL, Status.ON_HOLD, Status.CANCELLED},
    Status.STOPPED: {Status.PRODUCTION, Status.QUALITY_CONTROL, Status.ON_HOLD, Status.CANCELLED},
    Status.ON_HOLD: {Status.PENDING, Status.PLANNING, Status.PRODUCTION, Status.CANCELLED},
    Status.QUALITY_CONTROL: {
        Status.PRODUCTION,
        Status.READY_FOR_PICKUP,
        Status.READY_FOR_SHIPMENT,
        Status.COMPLETED,
        Status.CANCELLED,
    },
    Status.READY_FOR_SHIPMENT: {Status.IN_TRANSIT, Status.ON_HOLD, Status.CANCELLED},
    Status.IN_TRANSIT: {Status.DELIVERED, Status.AWAITING_INSTALLATION},
    Status.READY_FOR_PICKUP: {Status.AWAITING_INSTALLATION, Status.DELIVERED, Status.TO_INVOICE, Status.COMPLETED},
    Status.AWAITING_INSTALLATION: {Status.TO_INVOICE, Status.DELIVERED, Status.COMPLETED},
    Status.TO_INVOICE: {Status.AWAITING_INSTALLATION},
}


class Action(models.TextChoices):
    APPROVE_QUALITY = "approve_quality", "Aprovar qualidade"
    SCHEDULE_INSTALLATION = "schedule_installation", "Confirmar instalação"
    DEFER_INVOICING = "defer_invoicing", "Enviar para faturamento"


WORKFLOW_ACTIONS = {
    Action.APPROVE_QUALITY: (frozenset({Status.QUALITY_CONTROL}), Status.READY_FOR_PICKUP),
    Action.SCHEDULE_INSTALLATION: (frozenset({Status.READY_FOR_PICKUP}), Status.AWAITING_INSTALLATION),
    Action.DEFER_INVOICING: (frozenset({Status.AWAITING_INSTALLATION}), Status.TO_INVOICE),
}


def status_label(value) -> str:
    try:
        return Status(value).label
    except ValueError:
        return str(value)


def workflow_target(current, action) -> str:
    if action not in Action.values:
        raise errors.ValidationError(f"Ação desconhecida: {action}.")
    sources, target = WORKFLOW_ACTIONS[Action(action)]
    if current not in sources:
        raise errors.ConflictError(
            f"A ação '{Action(action).label}' não é permitida com a OS em '{status_label(current)}'."
        )
    return target


def check_manual_transition(current, target, tasks_completed: bool):
    """Valida uma edição manual de status; não consulta o banco."""
    if target not in Status.values:
        raise errors.ValidationError(f"Status desconhecido: {target}.")
    if target == current:
        raise errors.ConflictError(f"A OS já está em '{status_label(current)}'.")
    if target in SYSTEM_ONLY_STATUSES:
        raise errors.ConflictError("O status 'Faturado' só é definido pela geração da fatura.")
    if target not in MANUAL_TRANSITIONS.get(current, ()):
        raise errors.ConflictError(
            f"Não é possível mudar de '{status_label(current)}' para '{status_label(target)}'."
        )
    if target == Status.COMPLETED and not tasks_completed:
        raise errors.ConflictError("Finalize todas as tarefas antes de concluir a OS.")


def order_task_summary(order) -> dict:
    statuses = list(
        order.tasks.exclude(status=ServiceOrderTask.Status.CANCELLED).values_list("status", flat=True)
    )
    has_open_timer = TaskTimeLog.objects.filter(task__order=order, end_time__isnull=True).exists()
    return {
        "tasks": len(statuses),
        "all_completed": bool(statuses) and all(s == ServiceOrderTask.Status.COMPLETED for s in statuses),
        "has_open_timer": has_open_timer,
    }


def _compare_and_set(order, expected, new_status, context, note="", action=ServiceOrderLog.Action.STATUS):
    updated = ServiceOrder.objects.filter(pk=order.pk, status=expected).update(
        status=new_status, updated_at=timezone.now()
    )
    if not updated:
        logger.warning(
            "Concurrent status change on order %s (expected %s, target %s)", order.order_number, expected, new_status
        )
        raise errors.ConflictError("A OS foi alterada por outro usuário. Recarregue e tente novamente.")
    order.status = new_status
    create_order_log(order, context, action, from_status=expected, to_status=new_status, note=note)
    logger.info("Order %s: %s -> %s (%s)", order.order_number, expected, new_status, note or action)
    return order


def transition(context, order_id, action):
    """Executa um botão de fluxo (aprovar qualidade, instalação, faturamento)."""
    require_privileged(context, "Apenas administradores e gerentes podem avançar o fluxo da OS.")
    if action not in Action.values:
        raise errors.ValidationError(f"Ação desconhecida: {action}.")
    with store_errors("transition"):
        with transaction.atomic():
            order = get_or_not_found(
                ServiceOrder.objects.select_for_update(), order_id, "Ordem de serviço não encontrada."
            )
            target = workflow_target(order.status, action)
            return _compare_and_set(order, order.status, target, context, note=Action(action).label)


def change_status(context, order_id, status, note=""):
    """Edição manual de status, restrita à tabela de transições."""
    require_privileged(context, "Apenas administradores e gerentes podem alterar o status da OS.")
    with store_errors("change_status"):
        with transaction.atomic():
            order = get_or_not_found(
                ServiceOrder.objects.select_for_update(), order_id, "Ordem de serviço não encontrada."
            )
            summary = order_task_summary(order)
            check_manual_transition(order.status, status, summary["all_completed"])
            return _compare_and_set(order, order.status, status, context, note=note)


def on_timer_started(order, context):
    if order.status not in PRE_PRODUCTION_STATUSES:
        return None
    _compare_and_set(order, order.status, Status.PRODUCTION, context, note="Cronômetro iniciado")
    return Status.PRODUCTION


def reevaluate_order(order, context):
    """Recalcula o status da OS a partir das tarefas e cronômetros."""
    order.refresh_from_db(fields=["status"])
    summary = order_task_summary(order)
    if summary["all_completed"] and (order.status in PRE_PRODUCTION_STATUSES or order.status == Status.PRODUCTION):
        _compare_and_set(order, order.status, Status.QUALITY_CONTROL, context, note="Todas as tarefas concluídas")
        return Status.QUALITY_CONTROL
    if not summary["has_open_timer"] and order.status == Status.PRODUCTION:
        _compare_and_set(order, order.status, Status.STOPPED, context, note="Nenhum cronômetro ativo")
        return Status.STOPPED
    return None


def mark_invoiced(order, context, note=""):
    if order.status in NOT_BILLABLE_STATUSES:
        raise errors.ConflictError(f"A OS {order.order_number} não pode ser faturada em '{status_label(order.status)}'.")
    return _compare_and_set(
        order, order.status, Status.INVOICED, context, note=note, action=ServiceOrderLog.Action.INVOICE
    )
