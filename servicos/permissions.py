from dataclasses import dataclass
from functools import wraps

from django.apps import apps
from django.contrib.auth.models import Group, Permission
from django.contrib.contenttypes.models import ContentType

from . import errors
from .models import User


ROLE_ADMIN = "Administrador"
ROLE_MANAGER = "Gerente"
ROLE_WORKER = "Operario"
ROLE_GROUPS = {
    User.Role.ADMIN: ROLE_ADMIN,
    User.Role.MANAGER: ROLE_MANAGER,
    User.Role.WORKER: ROLE_WORKER,
}
ROLE_MODELS = [
    "servicos.Client",
    "servicos.ServiceOrder",
    "servicos.ServiceOrderTask",
    "servicos.TaskTimeLog",
    "servicos.Observation",
    "servicos.ServiceOrderCall",
    "servicos.InventoryItem",
    "servicos.TaskProductUsage",
    "servicos.Invoice",
    "servicos.Budget",
    "servicos.BudgetItem",
]
WORKER_MODELS = {
    "servicos.ServiceOrderTask",
    "servicos.TaskTimeLog",
    "servicos.Observation",
    "servicos.ServiceOrderCall",
    "servicos.TaskProductUsage",
}


@dataclass(frozen=True)
class CallerContext:
    """Identidade de quem chama uma operação de serviço."""

    id: int
    role: str
    name: str = ""

    @classmethod
    def from_user(cls, user) -> "CallerContext":
        if not getattr(user, "is_authenticated", False):
            raise errors.PermissionError("Usuário não autenticado.")
        role = getattr(user, "effective_role", None) or User.Role.WORKER
        name = user.get_full_name() or user.get_username()
        return cls(id=user.pk, role=str(role), name=name)

    @property
    def is_admin(self) -> bool:
        return self.role == User.Role.ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role == User.Role.MANAGER

    @property
    def is_worker(self) -> bool:
        return self.role == User.Role.WORKER


def is_privileged(context: CallerContext) -> bool:
    return context.role in (User.Role.ADMIN, User.Role.MANAGER)


def can_delete_orders(context: CallerContext) -> bool:
    return context.role == User.Role.ADMIN


def can_act_for_worker(context: CallerContext, worker_id) -> bool:
    return is_privileged(context) or context.id == worker_id


def require_privileged(context: CallerContext, message=None):
    if not is_privileged(context):
        raise errors.PermissionError(message or "Apenas administradores e gerentes podem realizar esta operação.")


def require_admin(context: CallerContext, message=None):
    if not context.is_admin:
        raise errors.PermissionError(message or "Apenas administradores podem realizar esta operação.")


def setup_roles() -> dict:
    summary = {}
    for role, group_name in ROLE_GROUPS.items():
        group, _ = Group.objects.get_or_create(name=group_name)
        permissions = []
        for model_path in ROLE_MODELS:
            if role == User.Role.WORKER and model_path not in WORKER_MODELS:
                codename_prefixes = ["view"]
            elif role == User.Role.ADMIN:
                codename_prefixes = ["view", "add", "change", "delete"]
            else:
                codename_prefixes = ["view", "add", "change"]
            model = apps.get_model(model_path)
            content_type = ContentType.objects.get_for_model(model)
            model_name = model._meta.model_name
            codenames = [f"{prefix}_{model_name}" for prefix in codename_prefixes]
            permissions += list(
                Permission.objects.filter(content_type=content_type, codename__in=codenames)
            )
        group.permissions.add(*permissions)
        summary[group.name] = len(permissions)
    return summary


def sync_user_group(user):
    group_name = ROLE_GROUPS.get(user.role)
    if not group_name:
        return
    groups = Group.objects.filter(name__in=ROLE_GROUPS.values())
    user.groups.remove(*groups.exclude(name=group_name))
    group = groups.filter(name=group_name).first()
    if group:
        user.groups.add(group)


def privileged_required(view_func):
    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        caller = getattr(request, "caller", None)
        if caller is None:
            raise errors.PermissionError("Usuário não autenticado.")
        require_privileged(caller)
        return view_func(request, *args, **kwargs)

    return _wrapped
