from decimal import Decimal, InvalidOperation
import logging

from django.db import transaction
from django.utils import timezone

from .. import errors
from ..errors import store_errors
from ..models import Budget, BudgetItem, Client
from ..permissions import require_privileged
from . import get_or_not_found
from .numbering import next_budget_number

logger = logging.getLogger(__name__)

BUDGET_TRANSITIONS = {
    Budget.Status.DRAFT: {Budget.Status.SENT},
    Budget.Status.SENT: {Budget.Status.APPROVED, Budget.Status.REJECTED, Budget.Status.EXPIRED},
}


def _decimal(value, label) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise errors.ValidationError(f"{label} inválido.")
    if not number.is_finite():
        raise errors.ValidationError(f"{label} inválido.")
    if number < 0:
        raise errors.ValidationError(f"{label} não pode ser negativo.")
    return number


def clean_items(items):
    cleaned = []
    for raw in items or ():
        service_name = (raw.get("service_name") or "").strip()
        if not service_name:
            raise errors.ValidationError("Informe o serviço de cada item do orçamento.")
        cleaned.append(
            {
                "service_name": service_name,
                "description": raw.get("description") or "",
                "quantity": _decimal(raw.get("quantity", 1), "Quantidade"),
                "unit_price": _decimal(raw.get("unit_price", 0), "Preço unitário"),
            }
        )
    return cleaned


def line_total(item) -> Decimal:
    return _decimal(item["quantity"], "Quantidade") * _decimal(item["unit_price"], "Preço unitário")


def budget_total(items) -> Decimal:
    """Soma de quantidade x preço unitário de cada item."""
    return sum((line_total(item) for item in items), Decimal("0")).quantize(Decimal("0.01"))


def _write_items(budget, items):
    for item in items:
        BudgetItem(budget=budget, **item).save()
    budget.total_value = budget_total(items)
    budget.save(update_fields=["total_value", "updated_at"])


def create_budget(context, items, *, client_id=None, client_name="", client_contact="",
                  client_address="", description="", valid_until=None):
    require_privileged(context, "Apenas administradores e gerentes podem criar orçamentos.")
    items = clean_items(items)
    if not client_id and not (client_name or "").strip():
        raise errors.ValidationError("Informe o cliente.")
    with store_errors("create_budget"):
        with transaction.atomic():
            if client_id:
                client = get_or_not_found(Client.objects.all(), client_id, "Cliente não encontrado.")
                client_name = client.name
                client_contact = client.contact
                client_address = client.address
            budget = Budget.objects.create(
                budget_number=next_budget_number(),
                client_id=client_id,
                client_name=client_name.strip(),
                client_contact=client_contact,
                client_address=client_address,
                description=description,
                valid_until=valid_until,
                created_by_id=context.id,
            )
            _write_items(budget, items)
    logger.info("Budget %s created by %s: total %s", budget.budget_number, context.id, budget.total_value)
    return budget


def replace_budget_items(context, budget_id, items):
    require_privileged(context, "Apenas administradores e gerentes podem editar orçamentos.")
    items = clean_items(items)
    with store_errors("replace_budget_items"):
        with transaction.atomic():
            budget = get_or_not_found(Budget.objects.select_for_update(), budget_id, "Orçamento não encontrado.")
            if budget.status != Budget.Status.DRAFT:
                raise errors.ConflictError("Somente orçamentos em rascunho podem ser alterados.")
            budget.items.all().delete()
            _write_items(budget, items)
    return budget


def change_budget_status(context, budget_id, status):
    require_privileged(context, "Apenas administradores e gerentes podem alterar orçamentos.")
    if status not in Budget.Status.values:
        raise errors.ValidationError("Status de orçamento inválido.")
    with store_errors("change_budget_status"):
        with transaction.atomic():
            budget = get_or_not_found(Budget.objects.select_for_update(), budget_id, "Orçamento não encontrado.")
            if status not in BUDGET_TRANSITIONS.get(budget.status, ()):
                raise errors.ConflictError(
                    f"Não é possível mudar o orçamento de '{Budget.Status(budget.status).label}' "
                    f"para '{Budget.Status(status).label}'."
                )
            if status == Budget.Status.SENT and not budget.items.exists():
                raise errors.ValidationError("Adicione ao menos um item antes de enviar o orçamento.")
            if status == Budget.Status.APPROVED and budget.is_expired():
                raise errors.ConflictError("O orçamento está vencido.")
            previous = budget.status
            budget.status = status
            budget.save(update_fields=["status", "updated_at"])
    logger.info("Budget %s: %s -> %s", budget.budget_number, previous, status)
    return budget


def expire_budgets(today=None) -> int:
    """Marca como expirados os orçamentos enviados com validade vencida."""
    today = today or timezone.now().date()
    with store_errors("expire_budgets"):
        count = Budget.objects.filter(status=Budget.Status.SENT, valid_until__lt=today).update(
            status=Budget.Status.EXPIRED, updated_at=timezone.now()
        )
    if count:
        logger.info("%s budget(s) expired", count)
    return count
