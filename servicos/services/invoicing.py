"""Geração de faturas a partir das ordens de serviço.

A fatura é um retrato do momento em que foi criada: número, valor de venda e
horas de cada OS são copiados para ``InvoiceOrder`` e não acompanham alterações
posteriores da OS. A gravação da fatura e a marcação das OS como faturadas
ocorrem na mesma transação.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
import logging
from typing import Optional, Tuple

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from .. import errors
from ..models import Client, Invoice, InvoiceExtra, InvoiceOrder, ServiceOrder
from ..permissions import require_privileged
from . import get_or_not_found
from . import state_machine
from .time_tracking import order_duration

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class ExtraItem:
    description: str
    value: Decimal


@dataclass(frozen=True)
class OrderSnapshot:
    order_id: int
    order_number: str
    sale_value: Decimal
    total_hours: float


@dataclass(frozen=True)
class InvoiceDraft:
    client_id: Optional[int]
    client_name: str
    start_date: date
    end_date: date
    orders: Tuple[OrderSnapshot, ...] = ()
    extras: Tuple[ExtraItem, ...] = ()

    @property
    def total_value(self) -> Decimal:
        return invoice_totals(self.orders, self.extras)[0]

    @property
    def total_time(self) -> float:
        return invoice_totals(self.orders, self.extras)[1]

    def as_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "client_name": self.client_name,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "orders": [
                {
                    "order_id": snap.order_id,
                    "order_number": snap.order_number,
                    "sale_value": str(snap.sale_value),
                    "total_hours": snap.total_hours,
                }
                for snap in self.orders
            ],
            "extras": [{"description": extra.description, "value": str(extra.value)} for extra in self.extras],
            "total_value": str(self.total_value),
            "total_time": self.total_time,
        }


def _money(value) -> Decimal:
    try:
        return Decimal(str(value)).quantize(CENTS)
    except (InvalidOperation, TypeError, ValueError):
        raise errors.ValidationError(f"Valor inválido: {value!r}.")


def normalize_extras(extras) -> Tuple[ExtraItem, ...]:
    """Converte as linhas de valores extras, ignorando as totalmente vazias."""
    items = []
    for raw in extras or ():
        if isinstance(raw, ExtraItem):
            items.append(raw)
            continue
        description = (raw.get("description") or "").strip()
        raw_value = raw.get("value")
        if not description and raw_value in (None, "", 0, "0"):
            continue
        value = _money(raw_value if raw_value not in (None, "") else 0)
        if not description:
            raise errors.ValidationError("Informe a descrição de cada valor extra.")
        items.append(ExtraItem(description=description, value=value))
    return tuple(items)


def invoice_totals(orders, extras) -> Tuple[Decimal, float]:
    total_value = sum((snap.sale_value for snap in orders), Decimal("0.00"))
    total_value += sum((extra.value for extra in extras), Decimal("0.00"))
    total_time = sum((snap.total_hours for snap in orders), 0.0)
    return total_value, total_time


def validate_period(client_id, start_date, end_date):
    if not client_id:
        raise errors.ValidationError("Preencha cliente e período.")
    if not start_date or not end_date:
        raise errors.ValidationError("Preencha cliente e período.")
    if start_date > end_date:
        raise errors.ValidationError("Data de início não pode ser maior que a data final.")


def billable_orders(client_id, start_date, end_date, today=None, lock=False):
    """OS do cliente cujo período de execução cabe em [start_date, end_date]."""
    today = today or timezone.now().date()
    qs = ServiceOrder.objects.all()
    if lock:
        qs = qs.select_for_update(of=("self",))
    return (
        qs.filter(client_id=client_id, invoice_snapshot__isnull=True)
        .exclude(status__in=state_machine.NOT_BILLABLE_STATUSES)
        .annotate(
            window_start=Coalesce("service_start_date", "opening_date"),
            window_end=Coalesce("service_end_date", Value(today)),
        )
        .filter(window_start__gte=start_date, window_end__lte=end_date)
        .order_by("window_start", "order_number")
    )


def snapshot_order(order, now=None) -> OrderSnapshot:
    return OrderSnapshot(
        order_id=order.pk,
        order_number=order.order_number,
        sale_value=order.sale_value if order.sale_value is not None else Decimal("0.00"),
        total_hours=order_duration(order.pk, now),
    )


def preview_invoice(client_id, start_date, end_date, extras=(), now=None) -> InvoiceDraft:
    validate_period(client_id, start_date, end_date)
    extras = normalize_extras(extras)
    now = now or timezone.now()
    try:
        client = get_or_not_found(Client.objects.all(), client_id, "Cliente não encontrado.")
        orders = [snapshot_order(order, now) for order in billable_orders(client.pk, start_date, end_date, now.date())]
    except DatabaseError as exc:
        logger.exception("Store error while previewing invoice for client %s", client_id)
        raise errors.StoreError() from exc
    return InvoiceDraft(
        client_id=client.pk,
        client_name=client.name,
        start_date=start_date,
        end_date=end_date,
        orders=tuple(orders),
        extras=extras,
    )


def _persist(draft: InvoiceDraft, context) -> Invoice:
    total_value, total_time = invoice_totals(draft.orders, draft.extras)
    invoice = Invoice.objects.create(
        client_id=draft.client_id,
        client_name=draft.client_name,
        start_date=draft.start_date,
        end_date=draft.end_date,
        total_value=total_value,
        total_time=total_time,
        created_by_id=context.id,
    )
    InvoiceOrder.objects.bulk_create(
        [
            InvoiceOrder(
                invoice=invoice,
                order_id=snap.order_id,
                position=position,
                order_number=snap.order_number,
                sale_value=snap.sale_value,
                total_hours=snap.total_hours,
            )
            for position, snap in enumerate(draft.orders)
        ]
    )
    InvoiceExtra.objects.bulk_create(
        [InvoiceExtra(invoice=invoice, description=extra.description, value=extra.value) for extra in draft.extras]
    )
    return invoice


class _Workflow:
    """Acompanha as etapas de um fluxo transacional para o ``WorkflowError``."""

    def __init__(self, name):
        self.name = name
        self.step = ""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None or isinstance(exc, errors.ServiceError):
            return False
        if isinstance(exc, IntegrityError):
            logger.warning("%s conflicted at step %s: %s", self.name, self.step, exc)
            raise errors.ConflictError("Uma das OS já foi faturada por outra operação.") from exc
        if isinstance(exc, DatabaseError):
            logger.exception("%s failed at step %s; transaction rolled back", self.name, self.step)
            raise errors.WorkflowError(
                "Não foi possível gerar a fatura. Nenhuma alteração foi gravada.",
                failed_step=self.step,
                committed_steps=(),
                cause=exc,
            ) from exc
        return False


def create_invoice(context, client_id, start_date, end_date, extras=(), now=None) -> Optional[Invoice]:
    """Gera a fatura do período; devolve ``None`` quando não há OS a faturar."""
    require_privileged(context, "Apenas administradores e gerentes podem gerar faturas.")
    validate_period(client_id, start_date, end_date)
    extras = normalize_extras(extras)
    now = now or timezone.now()
    with _Workflow("create_invoice") as workflow:
        with transaction.atomic():
            workflow.step = "select_orders"
            client = get_or_not_found(Client.objects.all(), client_id, "Cliente não encontrado.")
            orders = list(billable_orders(client.pk, start_date, end_date, now.date(), lock=True))
            if not orders:
                logger.warning(
                    "No billable orders for client %s between %s and %s", client.pk, start_date, end_date
                )
                return None
            draft = InvoiceDraft(
                client_id=client.pk,
                client_name=client.name,
                start_date=start_date,
                end_date=end_date,
                orders=tuple(snapshot_order(order, now) for order in orders),
                extras=extras,
            )
            workflow.step = "persist_invoice"
            invoice = _persist(draft, context)
            workflow.step = "mark_orders_invoiced"
            for order in orders:
                state_machine.mark_invoiced(order, context, note=f"Fatura #{invoice.pk}")
    logger.info(
        "Invoice %s created for client %s: %s orders, total %s, %.4f h",
        invoice.pk,
        client.pk,
        len(orders),
        invoice.total_value,
        invoice.total_time,
    )
    return invoice


def immediate_invoice(context, order_id, extras=(), now=None) -> Invoice:
    """Fatura uma única OS direto da tela da ordem."""
    require_privileged(context, "Apenas administradores e gerentes podem gerar faturas.")
    extras = normalize_extras(extras)
    now = now or timezone.now()
    with _Workflow("immediate_invoice") as workflow:
        with transaction.atomic():
            workflow.step = "select_orders"
            order = get_or_not_found(
                ServiceOrder.objects.select_for_update(), order_id, "Ordem de serviço não encontrada."
            )
            if order.status not in state_machine.IMMEDIATE_INVOICE_STATUSES:
                raise errors.ConflictError(
                    f"A OS precisa estar em 'Aguardando Instalação' ou 'A Faturar' para ser faturada "
                    f"(atual: '{state_machine.status_label(order.status)}')."
                )
            if InvoiceOrder.objects.filter(order=order).exists():
                raise errors.ConflictError("Esta OS já foi faturada.")
            start = order.billing_start
            end = max(order.service_end_date or now.date(), start)
            draft = InvoiceDraft(
                client_id=order.client_id,
                client_name=order.client_name,
                start_date=start,
                end_date=end,
                orders=(snapshot_order(order, now),),
                extras=extras,
            )
            workflow.step = "persist_invoice"
            invoice = _persist(draft, context)
            workflow.step = "mark_orders_invoiced"
            state_machine.mark_invoiced(order, context, note=f"Fatura #{invoice.pk}")
    logger.info("Immediate invoice %s created for order %s", invoice.pk, order.order_number)
    return invoice
