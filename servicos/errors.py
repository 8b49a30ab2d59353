"""Erros da camada de serviço.

Cada erro carrega uma mensagem legível para o usuário final. As views JSON
traduzem a classe do erro para o status HTTP correspondente (``http_status``).
"""
from contextlib import contextmanager
import logging

from django.core.exceptions import PermissionDenied
from django.db import DatabaseError, IntegrityError

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    http_status = 400
    default_message = "Não foi possível concluir a operação."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    http_status = 400
    default_message = "Dados inválidos."


class PermissionError(ServiceError, PermissionDenied):
    http_status = 403
    default_message = "Você não tem permissão para esta operação."


class NotFoundError(ServiceError):
    http_status = 404
    default_message = "Registro não encontrado."


class ConflictError(ServiceError):
    http_status = 409
    default_message = "A operação conflita com o estado atual do registro."


class StoreError(ServiceError):
    http_status = 503
    default_message = "Falha de comunicação com o banco de dados."


class WorkflowError(ServiceError):
    """Falha em um fluxo de várias etapas.

    ``committed_steps`` lista as etapas que ficaram gravadas e ``failed_step``
    a etapa que falhou, para que quem chamou saiba o que reexecutar.
    """

    http_status = 500
    default_message = "O fluxo não pôde ser concluído."

    def __init__(self, message=None, *, failed_step="", committed_steps=(), cause=None):
        super().__init__(message)
        self.failed_step = failed_step
        self.committed_steps = list(committed_steps)
        self.cause = cause


@contextmanager
def store_errors(operation: str):
    """Converte falhas do ORM nos erros da camada de serviço."""
    try:
        yield
    except ServiceError:
        raise
    except IntegrityError as exc:
        logger.warning("Integrity error during %s: %s", operation, exc)
        raise ConflictError("O registro foi alterado por outra operação. Tente novamente.") from exc
    except DatabaseError as exc:
        logger.exception("Store error during %s", operation)
        raise StoreError() from exc
