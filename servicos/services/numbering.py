import logging

from django.conf import settings
from django.db import transaction

from ..errors import store_errors
from ..models import NumberSequence

logger = logging.getLogger(__name__)

ORDER_SEQUENCE = "service_order"
BUDGET_SEQUENCE = "budget"


def format_number(prefix: str, value: int, padding=None) -> str:
    padding = settings.DOCUMENT_NUMBER_PADDING if padding is None else padding
    return f"{prefix}{value:0{padding}d}"


def next_value(sequence: str) -> int:
    """Reserva o próximo valor da sequência com a linha bloqueada."""
    with store_errors(f"next_value:{sequence}"):
        with transaction.atomic():
            NumberSequence.objects.get_or_create(name=sequence)
            row = NumberSequence.objects.select_for_update().get(name=sequence)
            row.last_value += 1
            row.save(update_fields=["last_value"])
    logger.debug("Sequence %s advanced to %s", sequence, row.last_value)
    return row.last_value


def next_order_number() -> str:
    return format_number(settings.ORDER_NUMBER_PREFIX, next_value(ORDER_SEQUENCE))


def next_budget_number() -> str:
    return format_number(settings.BUDGET_NUMBER_PREFIX, next_value(BUDGET_SEQUENCE))
