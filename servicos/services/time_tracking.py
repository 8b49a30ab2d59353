"""Cronômetro de tarefas.

A regra central é um único intervalo aberto por (tarefa, operário). Ela é
garantida por uma restrição única parcial em ``TaskTimeLog`` e pelo bloqueio da
linha da tarefa durante a verificação; quem perder a corrida recebe
``ConflictError``.

O cálculo da duração é puro (``accumulated_duration``): recebe os registros e o
instante ``now``. A tela pode recalcular o contador a cada segundo a partir de
``TimerState`` sem consultar o banco novamente.
"""
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Iterable, Optional, Tuple

from django.db import transaction
from django.utils import timezone

from .. import errors
from ..errors import store_errors
from ..models import ServiceOrderTask, TaskTimeLog, User
from ..permissions import can_act_for_worker, is_privileged
from . import get_or_not_found
from . import state_machine
from .tasks import apply_task_status

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600.0


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_HOUR


def log_hours(log, now: Optional[datetime] = None) -> float:
    if log.end_time is None:
        now = now or timezone.now()
        return max(hours_between(log.start_time, now), 0.0)
    if log.hours_worked is not None:
        return float(log.hours_worked)
    return hours_between(log.start_time, log.end_time)


def accumulated_duration(logs: Iterable, now: Optional[datetime] = None, include_open=True) -> float:
    """Soma as horas dos registros fechados e, opcionalmente, dos abertos até ``now``.

    ``hours_worked`` gravado prevalece sobre a diferença entre os horários,
    assim correções manuais não são sobrescritas.
    """
    now = now or timezone.now()
    total = 0.0
    for log in logs:
        if log.end_time is None and not include_open:
            continue
        total += log_hours(log, now)
    return total


@dataclass(frozen=True)
class TimerState:
    closed_hours: float
    open_starts: Tuple[datetime, ...] = ()
    open_log_id: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return bool(self.open_starts)

    def total(self, now: Optional[datetime] = None) -> float:
        now = now or timezone.now()
        return self.closed_hours + sum(max(hours_between(start, now), 0.0) for start in self.open_starts)

    def as_dict(self, now: Optional[datetime] = None) -> dict:
        now = now or timezone.now()
        return {
            "closed_hours": self.closed_hours,
            "open_starts": [start.isoformat() for start in self.open_starts],
            "open_log_id": self.open_log_id,
            "is_running": self.is_running,
            "total_hours": self.total(now),
            "now": now.isoformat(),
        }


def timer_state(task_id, worker_id=None) -> TimerState:
    """Carrega o estado do cronômetro de uma tarefa.

    Com ``worker_id`` só o intervalo aberto desse operário entra no total ao
    vivo; os intervalos fechados de todos contam sempre.
    """
    with store_errors("timer_state"):
        if not ServiceOrderTask.objects.filter(pk=task_id).exists():
            raise errors.NotFoundError("Tarefa não encontrada.")
        logs = list(TaskTimeLog.objects.filter(task_id=task_id).order_by("start_time", "id"))
    closed = accumulated_duration([log for log in logs if log.end_time is not None])
    open_logs = [log for log in logs if log.end_time is None]
    if worker_id is not None:
        open_logs = [log for log in open_logs if log.worker_id == worker_id]
    return TimerState(
        closed_hours=closed,
        open_starts=tuple(log.start_time for log in open_logs),
        open_log_id=open_logs[0].pk if len(open_logs) == 1 else None,
    )


def task_duration(task_id, now: Optional[datetime] = None) -> float:
    with store_errors("task_duration"):
        logs = list(TaskTimeLog.objects.filter(task_id=task_id))
    return accumulated_duration(logs, now)


def order_duration(order_id, now: Optional[datetime] = None) -> float:
    with store_errors("order_duration"):
        logs = list(TaskTimeLog.objects.filter(task__order_id=order_id))
    return accumulated_duration(logs, now)


def start_timer(context, task_id, worker_id=None, now: Optional[datetime] = None):
    worker_id = worker_id or context.id
    if not can_act_for_worker(context, worker_id):
        raise errors.PermissionError("Você só pode iniciar o seu próprio cronômetro.")
    now = now or timezone.now()
    with store_errors("start_timer"):
        with transaction.atomic():
            task = get_or_not_found(
                ServiceOrderTask.objects.select_for_update().select_related("order"),
                task_id,
                "Tarefa não encontrada.",
            )
            if not User.objects.filter(pk=worker_id, is_active=True).exists():
                raise errors.NotFoundError("Operário não encontrado.")
            if not is_privileged(context) and task.assigned_worker_id not in (None, context.id):
                raise errors.PermissionError("Esta tarefa não está atribuída a você.")
            if task.status in (ServiceOrderTask.Status.COMPLETED, ServiceOrderTask.Status.CANCELLED):
                raise errors.ConflictError("Não é possível cronometrar uma tarefa encerrada.")
            if task.order.status in state_machine.TERMINAL_STATUSES:
                raise errors.ConflictError("Não é possível cronometrar tarefas de uma OS encerrada.")
            if TaskTimeLog.objects.filter(task=task, worker_id=worker_id, end_time__isnull=True).exists():
                raise errors.ConflictError("Já existe um cronômetro aberto para esta tarefa.")
            log = TaskTimeLog.objects.create(task=task, worker_id=worker_id, start_time=now)
            if task.status == ServiceOrderTask.Status.PENDING:
                apply_task_status(task, ServiceOrderTask.Status.IN_PROGRESS, context)
            state_machine.on_timer_started(task.order, context)
    logger.info("Timer %s started on task %s by worker %s", log.pk, task.pk, worker_id)
    return log


def stop_timer(context, log_id, description="", complete_task=False, now: Optional[datetime] = None):
    now = now or timezone.now()
    with store_errors("stop_timer"):
        with transaction.atomic():
            log = get_or_not_found(
                TaskTimeLog.objects.select_for_update().select_related("task__order"),
                log_id,
                "Registro de tempo não encontrado.",
            )
            if not can_act_for_worker(context, log.worker_id):
                raise errors.PermissionError("Você só pode parar o seu próprio cronômetro.")
            if log.end_time is not None:
                raise errors.NotFoundError("Este cronômetro já foi encerrado.")
            if now < log.start_time:
                raise errors.ValidationError("O horário de término é anterior ao início.")
            hours = hours_between(log.start_time, now)
            closed = TaskTimeLog.objects.filter(pk=log.pk, end_time__isnull=True).update(
                end_time=now,
                hours_worked=hours,
                description=description or log.description,
            )
            if not closed:
                raise errors.NotFoundError("Este cronômetro já foi encerrado.")
            log.end_time = now
            log.hours_worked = hours
            log.description = description or log.description
            task = log.task
            if complete_task and task.status != ServiceOrderTask.Status.COMPLETED:
                apply_task_status(task, ServiceOrderTask.Status.COMPLETED, context, now)
            else:
                state_machine.reevaluate_order(task.order, context)
    logger.info("Timer %s stopped on task %s: %.4f h", log.pk, task.pk, hours)
    return log


def correct_hours(context, log_id, hours_worked):
    """Correção manual de horas de um registro fechado (gerente/administrador)."""
    if not is_privileged(context):
        raise errors.PermissionError("Apenas administradores e gerentes podem corrigir horas.")
    try:
        hours_worked = float(hours_worked)
    except (TypeError, ValueError):
        raise errors.ValidationError("Informe as horas trabalhadas.")
    if hours_worked < 0:
        raise errors.ValidationError("As horas trabalhadas não podem ser negativas.")
    with store_errors("correct_hours"):
        log = get_or_not_found(TaskTimeLog.objects.all(), log_id, "Registro de tempo não encontrado.")
        if log.end_time is None:
            raise errors.ConflictError("Pare o cronômetro antes de corrigir as horas.")
        log.hours_worked = hours_worked
        log.save(update_fields=["hours_worked"])
    logger.info("Timer %s corrected to %.4f h by %s", log.pk, hours_worked, context.id)
    return log
