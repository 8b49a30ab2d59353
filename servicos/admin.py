from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import (
    Budget,
    BudgetItem,
    Client,
    InventoryItem,
    InventoryMovement,
    Invoice,
    InvoiceExtra,
    InvoiceOrder,
    Observation,
    ServiceOrder,
    ServiceOrderCall,
    ServiceOrderLog,
    ServiceOrderTask,
    TaskTimeLog,
    User,
)
from .permissions import sync_user_group
from .services.budgets import budget_total
from .services.numbering import next_budget_number, next_order_number
from .services.state_machine import TERMINAL_STATUSES


class ReadOnlyAdminMixin:
    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(User)
class ServicosUserAdmin(UserAdmin):
    fieldsets = (
        ("Credenciais", {"fields": ("username", "password")}),
        ("Dados pessoais", {"fields": ("first_name", "last_name", "email")}),
        ("Perfil", {"fields": ("role",)}),
        ("Permissoes", {"fields": ("is_active", "is_staff", "is_superuser", "groups", "user_permissions")}),
        ("Datas importantes", {"fields": ("last_login", "date_joined")}),
    )
    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": ("username", "email", "role", "password1", "password2"),
            },
        ),
    )
    list_display = ("username", "email", "role", "is_staff", "is_active")
    list_filter = ("role", "is_staff", "is_superuser", "is_active")
    search_fields = ("username", "email", "first_name", "last_name")

    def save_model(self, request, obj, form, change):
        super().save_model(request, obj, form, change)
        sync_user_group(obj)


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    fieldsets = (
        ("Identificacao", {"fields": ("name", "cnpj_cpf")}),
        ("Contato", {"fields": ("contact", "address")}),
        ("Controle", {"fields": ("created_at",)}),
    )
    list_display = ("name", "contact", "cnpj_cpf")
    search_fields = ("name", "contact", "cnpj_cpf")
    readonly_fields = ("created_at",)


class ServiceOrderTaskInline(admin.TabularInline):
    model = ServiceOrderTask
    fields = ("title", "assigned_worker", "status", "priority", "estimated_hours")
    readonly_fields = ("status",)
    extra = 0

    def has_add_permission(self, request, obj=None):
        if obj is not None and obj.status in TERMINAL_STATUSES:
            return False
        return super().has_add_permission(request, obj)

    def has_change_permission(self, request, obj=None):
        if obj is not None and obj.status in TERMINAL_STATUSES:
            return False
        return super().has_change_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.status in TERMINAL_STATUSES:
            return False
        return super().has_delete_permission(request, obj)


@admin.register(ServiceOrder)
class ServiceOrderAdmin(admin.ModelAdmin):
    fieldsets = (
        ("Identificacao", {"fields": ("order_number", "status", "urgency")}),
        ("Cliente", {"fields": ("client", "client_name", "client_contact", "client_address")}),
        ("Servico", {"fields": ("service_description", "sale_value", "assigned_worker")}),
        ("Datas", {"fields": ("opening_date", "deadline", "service_start_date", "service_end_date")}),
        ("Controle", {"fields": ("created_by", "created_at", "updated_at")}),
    )
    list_display = ("order_number", "client_name", "status", "urgency", "opening_date", "sale_value")
    list_filter = ("status", "urgency")
    search_fields = ("order_number", "client_name", "service_description")
    readonly_fields = ("order_number", "status", "created_by", "created_at", "updated_at")
    inlines = [ServiceOrderTaskInline]

    def save_model(self, request, obj, form, change):
        if not change:
            obj.order_number = next_order_number()
            obj.created_by = request.user
        super().save_model(request, obj, form, change)

    def has_change_permission(self, request, obj=None):
        if obj is not None and obj.status == ServiceOrder.Status.INVOICED:
            return False
        return super().has_change_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.status == ServiceOrder.Status.INVOICED:
            return False
        return super().has_delete_permission(request, obj)


@admin.register(ServiceOrderTask)
class ServiceOrderTaskAdmin(admin.ModelAdmin):
    list_display = ("title", "order", "assigned_worker", "status", "priority")
    list_filter = ("status", "priority")
    search_fields = ("title", "order__order_number")
    readonly_fields = ("status", "created_by", "created_at", "updated_at")


@admin.register(TaskTimeLog)
class TaskTimeLogAdmin(admin.ModelAdmin):
    list_display = ("task", "worker", "start_time", "end_time", "hours_worked")
    list_filter = ("worker",)
    search_fields = ("task__title", "task__order__order_number", "worker__username")
    readonly_fields = ("task", "worker", "start_time", "end_time", "created_at")

    def has_add_permission(self, request):
        return False


@admin.register(ServiceOrderLog)
class ServiceOrderLogAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("order", "action", "from_status", "to_status", "user", "created_at")
    list_filter = ("action",)
    search_fields = ("order__order_number", "user__username")


@admin.register(Observation)
class ObservationAdmin(admin.ModelAdmin):
    list_display = ("order", "user", "created_at")
    search_fields = ("order__order_number", "text")
    readonly_fields = ("created_at",)


@admin.register(ServiceOrderCall)
class ServiceOrderCallAdmin(admin.ModelAdmin):
    list_display = ("order", "reason", "resolved", "opened_by", "created_at")
    list_filter = ("resolved",)
    search_fields = ("order__order_number", "reason")
    readonly_fields = ("opened_by", "resolved_by", "resolved_at", "created_at")


@admin.register(InventoryItem)
class InventoryItemAdmin(admin.ModelAdmin):
    list_display = ("name", "current_quantity", "updated_at")
    search_fields = ("name",)


@admin.register(InventoryMovement)
class InventoryMovementAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("item", "movement_type", "quantity", "user", "service_order", "created_at")
    list_filter = ("movement_type",)


class InvoiceOrderInline(ReadOnlyAdminMixin, admin.TabularInline):
    model = InvoiceOrder
    fields = ("position", "order_number", "sale_value", "total_hours")
    extra = 0


class InvoiceExtraInline(ReadOnlyAdminMixin, admin.TabularInline):
    model = InvoiceExtra
    fields = ("description", "value")
    extra = 0


@admin.register(Invoice)
class InvoiceAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "client_name", "start_date", "end_date", "total_value", "total_time", "created_at")
    search_fields = ("client_name",)
    inlines = [InvoiceOrderInline, InvoiceExtraInline]


class BudgetItemInline(admin.TabularInline):
    model = BudgetItem
    fields = ("service_name", "description", "quantity", "unit_price", "total_price")
    readonly_fields = ("total_price",)
    extra = 0

    def has_add_permission(self, request, obj=None):
        if obj is not None and obj.status != Budget.Status.DRAFT:
            return False
        return super().has_add_permission(request, obj)

    def has_change_permission(self, request, obj=None):
        if obj is not None and obj.status != Budget.Status.DRAFT:
            return False
        return super().has_change_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.status != Budget.Status.DRAFT:
            return False
        return super().has_delete_permission(request, obj)


@admin.register(Budget)
class BudgetAdmin(admin.ModelAdmin):
    list_display = ("budget_number", "client_name", "status", "total_value", "valid_until")
    list_filter = ("status",)
    search_fields = ("budget_number", "client_name")
    readonly_fields = ("budget_number", "status", "total_value", "created_by", "created_at")
    inlines = [BudgetItemInline]

    def save_model(self, request, obj, form, change):
        if not change:
            obj.budget_number = next_budget_number()
            obj.created_by = request.user
        super().save_model(request, obj, form, change)

    def save_related(self, request, form, formsets, change):
        super().save_related(request, form, formsets, change)
        budget = form.instance
        items = budget.items.values("quantity", "unit_price")
        budget.total_value = budget_total(items)
        budget.save(update_fields=["total_value", "updated_at"])
