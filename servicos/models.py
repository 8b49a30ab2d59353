from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone


class User(AbstractUser):
    class Role(models.TextChoices):
        ADMIN = "admin", "Administrador"
        MANAGER = "manager", "Gerente"
        WORKER = "worker", "Operário"

    role = models.CharField(max_length=10, choices=Role.choices, default=Role.WORKER)
    REQUIRED_FIELDS = ["email"]

    def __str__(self) -> str:
        return self.get_full_name() or self.username

    @property
    def effective_role(self) -> str:
        if self.is_superuser:
            return self.Role.ADMIN
        return self.role

    def is_privileged(self) -> bool:
        return self.effective_role in (self.Role.ADMIN, self.Role.MANAGER)


class Client(models.Model):
    name = models.CharField(max_length=150)
    contact = models.CharField(max_length=100, blank=True)
    address = models.CharField(max_length=255, blank=True)
    cnpj_cpf = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name

    def save(self, *args, **kwargs):
        if self.name:
            self.name = self.name.strip()
        super().save(*args, **kwargs)


class NumberSequence(models.Model):
    name = models.CharField(max_length=30, primary_key=True)
    last_value = models.PositiveIntegerField(default=0)

    def __str__(self) -> str:
        return f"{self.name}: {self.last_value}"


class ServiceOrder(models.Model):
    class Status(models.TextChoices):
        RECEIVED = "received", "Recebido / Em Análise"
        PENDING = "pending", "Pendente"
        PLANNING = "planning", "Planejamento"
        PRODUCTION = "production", "Em Produção"
        QUALITY_CONTROL = "quality_control", "Controle de Qualidade"
        READY_FOR_SHIPMENT = "ready_for_shipment", "Pronto para Envio"
        READY_FOR_PICKUP = "ready_for_pickup", "Pronto para Retirada"
        IN_TRANSIT = "in_transit", "Em Trânsito"
        AWAITING_INSTALLATION = "awaiting_installation", "Aguardando Instalação"
        DELIVERED = "delivered", "Entregue"
        INVOICED = "invoiced", "Faturado"
        TO_INVOICE = "to_invoice", "A Faturar"
        COMPLETED = "completed", "Finalizado"
        CANCELLED = "cancelled", "Cancelado"
        ON_HOLD = "on_hold", "Em Espera"
        STOPPED = "stopped", "Parado"

    class Urgency(models.TextChoices):
        LOW = "low", "Baixa"
        MEDIUM = "medium", "Média"
        HIGH = "high", "Alta"

    order_number = models.CharField(max_length=20, unique=True)
    opening_date = models.DateField(default=timezone.now)
    client = models.ForeignKey(
        Client, on_delete=models.SET_NULL, related_name="service_orders", null=True, blank=True
    )
    client_name = models.CharField(max_length=150)
    client_contact = models.CharField(max_length=100, blank=True)
    client_address = models.CharField(max_length=255, blank=True)
    service_description = models.TextField()
    sale_value = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True, validators=[MinValueValidator(0)]
    )
    status = models.CharField(max_length=30, choices=Status.choices, default=Status.PENDING)
    urgency = models.CharField(max_length=10, choices=Urgency.choices, default=Urgency.MEDIUM)
    assigned_worker = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="assigned_orders",
        null=True,
        blank=True,
    )
    deadline = models.DateField(blank=True, null=True)
    service_start_date = models.DateField(blank=True, null=True)
    service_end_date = models.DateField(blank=True, null=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="created_orders",
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"{self.order_number} - {self.client_name}"

    @property
    def billing_start(self):
        return self.service_start_date or self.opening_date

    @property
    def billing_end(self):
        return self.service_end_date or timezone.now().date()


class ServiceOrderLog(models.Model):
    class Action(models.TextChoices):
        CREATE = "create", "Criar"
        ASSIGN = "assign", "Atribuir"
        STATUS = "status", "Alterar status"
        EDIT = "edit", "Editar"
        INVOICE = "invoice", "Faturar"

    order = models.ForeignKey(ServiceOrder, on_delete=models.CASCADE, related_name="logs")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=20, choices=Action.choices)
    from_status = models.CharField(max_length=30, blank=True)
    to_status = models.CharField(max_length=30, blank=True)
    note = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"{self.order_id} {self.action} {self.from_status}->{self.to_status}"


class Observation(models.Model):
    order = models.ForeignKey(ServiceOrder, on_delete=models.CASCADE, related_name="observations")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    text = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]


class ServiceOrderCall(models.Model):
    """Chamado aberto sobre uma OS (ex.: ordem parada aguardando decisão)."""

    order = models.ForeignKey(ServiceOrder, on_delete=models.CASCADE, related_name="calls")
    reason = models.TextField()
    resolved = models.BooleanField(default=False)
    opened_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="opened_calls",
        null=True,
        blank=True,
    )
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="resolved_calls",
        null=True,
        blank=True,
    )
    resolved_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"{self.order_id}: {self.reason[:40]}"


class ServiceOrderTask(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pendente"
        IN_PROGRESS = "in_progress", "Em Andamento"
        COMPLETED = "completed", "Concluída"
        CANCELLED = "cancelled", "Cancelada"

    class Priority(models.TextChoices):
        LOW = "low", "Baixa"
        MEDIUM = "medium", "Média"
        HIGH = "high", "Alta"

    order = models.ForeignKey(ServiceOrder, on_delete=models.CASCADE, related_name="tasks")
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    assigned_worker = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="assigned_tasks",
        null=True,
        blank=True,
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.MEDIUM)
    estimated_hours = models.DecimalField(
        max_digits=8, decimal_places=2, null=True, blank=True, validators=[MinValueValidator(0)]
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="created_tasks",
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return self.title


class TaskTimeLog(models.Model):
    task = models.ForeignKey(ServiceOrderTask, on_delete=models.CASCADE, related_name="time_logs")
    worker = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="time_logs")
    start_time = models.DateTimeField()
    end_time = models.DateTimeField(blank=True, null=True)
    description = models.TextField(blank=True)
    hours_worked = models.FloatField(blank=True, null=True, validators=[MinValueValidator(0)])
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["task", "worker"],
                condition=models.Q(end_time__isnull=True),
                name="unique_open_time_log_per_worker",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.task_id} / {self.worker_id} @ {self.start_time}"

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def hours_until(self, end) -> float:
        return max((end - self.start_time).total_seconds() / 3600.0, 0.0)


class InventoryItem(models.Model):
    name = models.CharField(max_length=150, unique=True)
    current_quantity = models.DecimalField(
        max_digits=12, decimal_places=2, default=0, validators=[MinValueValidator(0)]
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class InventoryMovement(models.Model):
    class Type(models.TextChoices):
        IN = "in", "Entrada"
        OUT = "out", "Saída"

    item = models.ForeignKey(InventoryItem, on_delete=models.CASCADE, related_name="movements")
    movement_type = models.CharField(max_length=3, choices=Type.choices)
    quantity = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    date = models.DateField(default=timezone.now)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    service_order = models.ForeignKey(
        ServiceOrder, on_delete=models.SET_NULL, related_name="inventory_movements", null=True, blank=True
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-date", "-id"]


class TaskProductUsage(models.Model):
    task = models.ForeignKey(ServiceOrderTask, on_delete=models.CASCADE, related_name="product_usages")
    item = models.ForeignKey(InventoryItem, on_delete=models.PROTECT, related_name="usages")
    quantity_used = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]


class Invoice(models.Model):
    client = models.ForeignKey(Client, on_delete=models.SET_NULL, related_name="invoices", null=True, blank=True)
    client_name = models.CharField(max_length=150)
    start_date = models.DateField()
    end_date = models.DateField()
    total_value = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    total_time = models.FloatField(default=0)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"Fatura #{self.pk} - {self.client_name}"

    def as_document(self) -> dict:
        return {
            "id": self.pk,
            "client_name": self.client_name,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "total_value": str(self.total_value),
            "total_time": self.total_time,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "orders": [
                {
                    "order_id": entry.order_id,
                    "order_number": entry.order_number,
                    "sale_value": str(entry.sale_value),
                    "total_hours": entry.total_hours,
                }
                for entry in self.order_snapshots.all()
            ],
            "extras": [
                {"description": extra.description, "value": str(extra.value)}
                for extra in self.extras.all()
            ],
        }


class InvoiceOrder(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="order_snapshots")
    order = models.OneToOneField(
        ServiceOrder, on_delete=models.PROTECT, related_name="invoice_snapshot", null=True, blank=True
    )
    position = models.PositiveIntegerField(default=0)
    order_number = models.CharField(max_length=20)
    sale_value = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_hours = models.FloatField(default=0)

    class Meta:
        ordering = ["invoice", "position", "id"]


class InvoiceExtra(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="extras")
    description = models.CharField(max_length=255)
    value = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ["id"]


class Budget(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Rascunho"
        SENT = "sent", "Enviado"
        APPROVED = "approved", "Aprovado"
        REJECTED = "rejected", "Rejeitado"
        EXPIRED = "expired", "Expirado"

    budget_number = models.CharField(max_length=20, unique=True)
    client = models.ForeignKey(Client, on_delete=models.SET_NULL, related_name="budgets", null=True, blank=True)
    client_name = models.CharField(max_length=150)
    client_contact = models.CharField(max_length=100, blank=True)
    client_address = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.DRAFT)
    total_value = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    valid_until = models.DateField(blank=True, null=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"{self.budget_number} - {self.client_name}"

    def is_expired(self, today=None) -> bool:
        if not self.valid_until:
            return False
        today = today or timezone.now().date()
        return self.valid_until < today

    def as_document(self) -> dict:
        return {
            "id": self.pk,
            "budget_number": self.budget_number,
            "client_name": self.client_name,
            "client_contact": self.client_contact,
            "client_address": self.client_address,
            "description": self.description,
            "status": self.status,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "total_value": str(self.total_value),
            "items": [
                {
                    "service_name": item.service_name,
                    "description": item.description,
                    "quantity": str(item.quantity),
                    "unit_price": str(item.unit_price),
                    "total_price": str(item.total_price),
                }
                for item in self.items.all()
            ],
        }


class BudgetItem(models.Model):
    budget = models.ForeignKey(Budget, on_delete=models.CASCADE, related_name="items")
    service_name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    quantity = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    total_price = models.DecimalField(max_digits=14, decimal_places=2, validators=[MinValueValidator(0)], blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def save(self, *args, **kwargs):
        self.total_price = (self.quantity or Decimal("0")) * (self.unit_price or Decimal("0"))
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return self.service_name
