import logging

from django.db import transaction
from django.utils import timezone

from .. import errors
from ..errors import store_errors
from ..models import ServiceOrder, ServiceOrderTask, TaskTimeLog, User
from ..permissions import is_privileged, require_privileged
from . import get_or_not_found, orders_visible_to
from . import state_machine

logger = logging.getLogger(__name__)

TaskStatus = ServiceOrderTask.Status

TASK_FIELDS = ("title", "description", "assigned_worker_id", "priority", "estimated_hours")
CLOSING_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


def _check_worker(worker_id):
    if worker_id and not User.objects.filter(pk=worker_id, is_active=True).exists():
        raise errors.NotFoundError("Operário não encontrado.")


def create_task(context, order_id, *, title, description="", assigned_worker_id=None,
                priority=ServiceOrderTask.Priority.MEDIUM, estimated_hours=None):
    require_privileged(context, "Apenas administradores e gerentes podem criar tarefas.")
    if not (title or "").strip():
        raise errors.ValidationError("Informe o título da tarefa.")
    if priority not in ServiceOrderTask.Priority.values:
        raise errors.ValidationError("Prioridade inválida.")
    with store_errors("create_task"):
        order = get_or_not_found(ServiceOrder.objects.all(), order_id, "Ordem de serviço não encontrada.")
        if order.status in state_machine.TERMINAL_STATUSES:
            raise errors.ConflictError("Não é possível adicionar tarefas a uma OS encerrada.")
        _check_worker(assigned_worker_id)
        task = ServiceOrderTask.objects.create(
            order=order,
            title=title.strip(),
            description=description or "",
            assigned_worker_id=assigned_worker_id,
            priority=priority,
            estimated_hours=estimated_hours,
            created_by_id=context.id,
        )
    logger.info("Task %s created on order %s by %s", task.pk, order.order_number, context.id)
    return task


def update_task(context, task_id, **fields):
    require_privileged(context, "Apenas administradores e gerentes podem editar tarefas.")
    unknown = set(fields) - set(TASK_FIELDS)
    if unknown:
        raise errors.ValidationError(f"Campos não editáveis: {', '.join(sorted(unknown))}.")
    if "priority" in fields and fields["priority"] not in ServiceOrderTask.Priority.values:
        raise errors.ValidationError("Prioridade inválida.")
    if "title" in fields and not (fields["title"] or "").strip():
        raise errors.ValidationError("Informe o título da tarefa.")
    with store_errors("update_task"):
        task = get_or_not_found(ServiceOrderTask.objects.all(), task_id, "Tarefa não encontrada.")
        _check_worker(fields.get("assigned_worker_id"))
        for name, value in fields.items():
            setattr(task, name, value)
        task.save(update_fields=list(fields) + ["updated_at"])
    return task


def delete_task(context, task_id):
    require_privileged(context, "Apenas administradores e gerentes podem excluir tarefas.")
    with store_errors("delete_task"):
        with transaction.atomic():
            task = get_or_not_found(
                ServiceOrderTask.objects.select_related("order"), task_id, "Tarefa não encontrada."
            )
            order = task.order
            task.delete()
            state_machine.reevaluate_order(order, context)
    logger.info("Task %s deleted from order %s by %s", task_id, order.order_number, context.id)


def close_open_logs(task, now=None):
    """Fecha os cronômetros abertos da tarefa no instante ``now``."""
    now = now or timezone.now()
    closed = 0
    for log in TaskTimeLog.objects.select_for_update().filter(task=task, end_time__isnull=True):
        closed += TaskTimeLog.objects.filter(pk=log.pk, end_time__isnull=True).update(
            end_time=now, hours_worked=log.hours_until(now)
        )
    if closed:
        logger.info("Task %s: %s open timer(s) closed", task.pk, closed)
    return closed


def apply_task_status(task, status, context, now=None):
    """Grava o status da tarefa e reavalia a OS quando ela é encerrada."""
    previous = task.status
    if status in CLOSING_STATUSES:
        close_open_logs(task, now)
    task.status = status
    task.save(update_fields=["status", "updated_at"])
    logger.info("Task %s: %s -> %s", task.pk, previous, status)
    if status in CLOSING_STATUSES:
        state_machine.reevaluate_order(task.order, context)
    return task


def set_task_status(context, task_id, status, now=None):
    if status not in TaskStatus.values:
        raise errors.ValidationError("Status de tarefa inválido.")
    with store_errors("set_task_status"):
        with transaction.atomic():
            task = get_or_not_found(
                ServiceOrderTask.objects.select_for_update().select_related("order"),
                task_id,
                "Tarefa não encontrada.",
            )
            if not is_privileged(context):
                if task.assigned_worker_id != context.id:
                    raise errors.PermissionError("Esta tarefa não está atribuída a você.")
                if status == TaskStatus.CANCELLED:
                    raise errors.PermissionError("Apenas administradores e gerentes podem cancelar tarefas.")
            if task.status == status:
                return task
            return apply_task_status(task, status, context, now)


def tasks_for_worker(context, status=None, priority=None):
    qs = ServiceOrderTask.objects.select_related("order", "assigned_worker").filter(
        assigned_worker_id=context.id
    )
    if status and status != "all":
        qs = qs.filter(status=status)
    if priority and priority != "all":
        qs = qs.filter(priority=priority)
    return qs


def tasks_for_order(context, order_id):
    order = get_or_not_found(orders_visible_to(context), order_id, "Ordem de serviço não encontrada.")
    return order.tasks.select_related("assigned_worker")
