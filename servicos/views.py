from functools import wraps
import json
import logging

from django.contrib.auth.decorators import login_required
from django.contrib.auth.mixins import LoginRequiredMixin
from django.http import JsonResponse
from django.utils import timezone
from django.views import View

from . import errors
from .forms import (
    BudgetForm,
    BudgetItemForm,
    BudgetStatusForm,
    CallForm,
    CorrectHoursForm,
    InvoiceExtraForm,
    InvoiceRequestForm,
    ObservationForm,
    OrderStatusForm,
    OrderTransitionForm,
    ProductUsageForm,
    ServiceOrderForm,
    ServiceOrderTaskForm,
    StartTimerForm,
    StopTimerForm,
    TaskStatusForm,
    service_kwargs,
)
from .models import Budget, Invoice, ServiceOrderTask, TaskTimeLog
from .permissions import is_privileged, privileged_required
from .services import get_or_not_found, orders_visible_to
from .services import budgets, calls, inventory, invoicing, orders, sharing, state_machine, tasks, time_tracking

logger = logging.getLogger(__name__)

DOCUMENT_INVOICE = "invoice"
DOCUMENT_BUDGET = "budget"


def _error_response(exc: errors.ServiceError):
    data = {"error": exc.message}
    if isinstance(exc, errors.WorkflowError):
        data["failed_step"] = exc.failed_step
        data["committed_steps"] = exc.committed_steps
    return JsonResponse(data, status=exc.http_status)


def _form_error(form):
    errors_by_field = {field: [str(e) for e in errs] for field, errs in form.errors.items()}
    first = next(iter(errors_by_field.values()), ["Dados inválidos."])[0]
    return errors.ValidationError(first), errors_by_field


def _payload(request):
    if request.content_type == "application/json":
        try:
            data = json.loads(request.body.decode("utf-8") or "{}")
        except (TypeError, ValueError):
            raise errors.ValidationError("Dados inválidos.")
        if not isinstance(data, dict):
            raise errors.ValidationError("Dados inválidos.")
        return data
    return request.POST


def _valid(form):
    if not form.is_valid():
        exc, details = _form_error(form)
        exc.details = details
        raise exc
    return form.cleaned_data


def _rows(payload, key, form_class):
    rows = payload.get(key) or []
    if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
        raise errors.ValidationError("Lista de itens inválida.")
    return [_valid(form_class(row)) for row in rows]


def _extras(payload):
    return _rows(payload, "extras", InvoiceExtraForm)


def json_errors(view_func):
    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except errors.ServiceError as exc:
            return _error_response(exc)

    return _wrapped


class ServiceJsonMixin(LoginRequiredMixin):
    """Views JSON: exige login e traduz erros de serviço em respostas HTTP."""

    def dispatch(self, request, *args, **kwargs):
        try:
            return super().dispatch(request, *args, **kwargs)
        except errors.ServiceError as exc:
            if isinstance(exc, errors.ValidationError) and getattr(exc, "details", None):
                return JsonResponse({"error": exc.message, "fields": exc.details}, status=exc.http_status)
            return _error_response(exc)

    @property
    def caller(self):
        return self.request.caller


def order_to_dict(order):
    return {
        "id": order.pk,
        "order_number": order.order_number,
        "status": order.status,
        "status_label": order.get_status_display(),
        "urgency": order.urgency,
        "client_id": order.client_id,
        "client_name": order.client_name,
        "client_contact": order.client_contact,
        "service_description": order.service_description,
        "sale_value": str(order.sale_value) if order.sale_value is not None else None,
        "assigned_worker_id": order.assigned_worker_id,
        "opening_date": order.opening_date.isoformat() if order.opening_date else None,
        "deadline": order.deadline.isoformat() if order.deadline else None,
        "service_start_date": order.service_start_date.isoformat() if order.service_start_date else None,
        "service_end_date": order.service_end_date.isoformat() if order.service_end_date else None,
    }


def task_to_dict(task):
    return {
        "id": task.pk,
        "order_id": task.order_id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "status_label": task.get_status_display(),
        "priority": task.priority,
        "assigned_worker_id": task.assigned_worker_id,
        "estimated_hours": str(task.estimated_hours) if task.estimated_hours is not None else None,
    }


def time_log_to_dict(log):
    return {
        "id": log.pk,
        "task_id": log.task_id,
        "worker_id": log.worker_id,
        "start_time": log.start_time.isoformat(),
        "end_time": log.end_time.isoformat() if log.end_time else None,
        "hours_worked": log.hours_worked,
        "description": log.description,
    }


def call_to_dict(call):
    return {
        "id": call.pk,
        "order_id": call.order_id,
        "order_number": call.order.order_number,
        "reason": call.reason,
        "resolved": call.resolved,
        "created_at": call.created_at.isoformat(),
        "resolved_at": call.resolved_at.isoformat() if call.resolved_at else None,
    }


class OrderListCreateView(ServiceJsonMixin, View):
    def get(self, request, *args, **kwargs):
        qs = orders_visible_to(self.caller)
        status = request.GET.get("status")
        if status and status != "all":
            qs = qs.filter(status=status)
        client = request.GET.get("client")
        if client:
            qs = qs.filter(client_id=client)
        return JsonResponse({"orders": [order_to_dict(order) for order in qs]})

    def post(self, request, *args, **kwargs):
        payload = _payload(request)
        form = ServiceOrderForm(payload)
        _valid(form)
        data = service_kwargs(form)
        if payload.get("status"):
            data["status"] = payload["status"]
        order = orders.create_order(self.caller, **data)
        return JsonResponse(order_to_dict(order), status=201)


class OrderDetailView(ServiceJsonMixin, View):
    def get(self, request, pk, *args, **kwargs):
        order = get_or_not_found(orders_visible_to(self.caller), pk, "Ordem de serviço não encontrada.")
        now = timezone.now()
        data = order_to_dict(order)
        data["tasks"] = [
            dict(task_to_dict(task), total_hours=time_tracking.task_duration(task.pk, now))
            for task in order.tasks.all()
        ]
        data["total_hours"] = time_tracking.order_duration(order.pk, now)
        data["observations"] = [
            {"user_id": obs.user_id, "text": obs.text, "created_at": obs.created_at.isoformat()}
            for obs in order.observations.all()
        ]
        if is_privileged(self.caller):
            data["history"] = [
                {
                    "action": log.action,
                    "from_status": log.from_status,
                    "to_status": log.to_status,
                    "note": log.note,
                    "user_id": log.user_id,
                    "created_at": log.created_at.isoformat(),
                }
                for log in order.logs.all()
            ]
        return JsonResponse(data)

    def post(self, request, pk, *args, **kwargs):
        form = ServiceOrderForm(_payload(request), partial=True)
        _valid(form)
        order = orders.update_order(self.caller, pk, **service_kwargs(form))
        return JsonResponse(order_to_dict(order))


class OrderDeleteView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        orders.delete_order(self.caller, pk)
        return JsonResponse({"ok": True})


class OrderStatusView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        data = _valid(OrderStatusForm(_payload(request)))
        order = state_machine.change_status(self.caller, pk, data["status"], note=data.get("note") or "")
        return JsonResponse(order_to_dict(order))


class OrderTransitionView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        data = _valid(OrderTransitionForm(_payload(request)))
        order = state_machine.transition(self.caller, pk, data["action"])
        return JsonResponse(order_to_dict(order))


class OrderObservationView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        data = _valid(ObservationForm(_payload(request)))
        observation = orders.add_observation(self.caller, pk, data["text"])
        return JsonResponse({"id": observation.pk, "text": observation.text}, status=201)


class OrderCallView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        data = _valid(CallForm(_payload(request)))
        call = calls.open_call(self.caller, pk, data["reason"])
        return JsonResponse(call_to_dict(call), status=201)


class CallListView(ServiceJsonMixin, View):
    def get(self, request, *args, **kwargs):
        resolved = {"true": True, "false": False}.get(request.GET.get("resolved", "").lower())
        return JsonResponse({"calls": [call_to_dict(call) for call in calls.list_calls(self.caller, resolved)]})


class CallResolveView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        return JsonResponse(call_to_dict(calls.resolve_call(self.caller, pk)))


class OrderImmediateInvoiceView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        extras = _extras(_payload(request))
        invoice = invoicing.immediate_invoice(self.caller, pk, extras)
        return JsonResponse(invoice.as_document(), status=201)


class OrderTaskCreateView(ServiceJsonMixin, View):
    def get(self, request, pk, *args, **kwargs):
        return JsonResponse({"tasks": [task_to_dict(task) for task in tasks.tasks_for_order(self.caller, pk)]})

    def post(self, request, pk, *args, **kwargs):
        form = ServiceOrderTaskForm(_payload(request))
        _valid(form)
        task = tasks.create_task(self.caller, pk, **service_kwargs(form))
        return JsonResponse(task_to_dict(task), status=201)


class TaskUpdateView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        form = ServiceOrderTaskForm(_payload(request), partial=True)
        _valid(form)
        task = tasks.update_task(self.caller, pk, **service_kwargs(form))
        return JsonResponse(task_to_dict(task))


class TaskDeleteView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        tasks.delete_task(self.caller, pk)
        return JsonResponse({"ok": True})


class TaskStatusView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        data = _valid(TaskStatusForm(_payload(request)))
        task = tasks.set_task_status(self.caller, pk, data["status"])
        task.order.refresh_from_db(fields=["status"])
        return JsonResponse(dict(task_to_dict(task), order_status=task.order.status))


class TimerStateView(ServiceJsonMixin, View):
    def get(self, request, pk, *args, **kwargs):
        task = get_or_not_found(ServiceOrderTask.objects.all(), pk, "Tarefa não encontrada.")
        if not is_privileged(self.caller) and task.assigned_worker_id not in (None, self.caller.id):
            raise errors.PermissionError("Esta tarefa não está atribuída a você.")
        worker_id = None if is_privileged(self.caller) else self.caller.id
        state = time_tracking.timer_state(task.pk, worker_id=worker_id)
        return JsonResponse(state.as_dict())


class TimerStartView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        data = _valid(StartTimerForm(_payload(request)))
        worker = data.get("worker")
        log = time_tracking.start_timer(self.caller, pk, worker_id=worker.pk if worker else None)
        return JsonResponse(time_log_to_dict(log), status=201)


class TimerStopView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        data = _valid(StopTimerForm(_payload(request)))
        log = time_tracking.stop_timer(
            self.caller, pk, description=data.get("description") or "", complete_task=data["complete_task"]
        )
        log.task.order.refresh_from_db(fields=["status"])
        return JsonResponse(dict(time_log_to_dict(log), order_status=log.task.order.status))


class TimeLogCorrectView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        data = _valid(CorrectHoursForm(_payload(request)))
        log = time_tracking.correct_hours(self.caller, pk, data["hours_worked"])
        return JsonResponse(time_log_to_dict(log))


class TaskProductUsageView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        data = _valid(ProductUsageForm(_payload(request)))
        usage = inventory.record_product_usage(self.caller, pk, data["item"].pk, data["quantity"])
        return JsonResponse({"id": usage.pk, "quantity_used": str(usage.quantity_used)}, status=201)


class MyTasksView(ServiceJsonMixin, View):
    def get(self, request, *args, **kwargs):
        qs = tasks.tasks_for_worker(
            self.caller, status=request.GET.get("status"), priority=request.GET.get("priority")
        )
        open_logs = {
            log.task_id: log
            for log in TaskTimeLog.objects.filter(worker_id=self.caller.id, end_time__isnull=True)
        }
        data = []
        for task in qs:
            item = task_to_dict(task)
            item["order_number"] = task.order.order_number
            item["client_name"] = task.order.client_name
            log = open_logs.get(task.pk)
            item["open_log_id"] = log.pk if log else None
            data.append(item)
        return JsonResponse({"tasks": data})


@json_errors
@login_required
@privileged_required
def invoice_preview(request):
    form = InvoiceRequestForm(request.GET)
    data = _valid(form)
    draft = invoicing.preview_invoice(data["client"].pk, data["start_date"], data["end_date"])
    return JsonResponse(draft.as_dict())


class InvoiceListCreateView(ServiceJsonMixin, View):
    def get(self, request, *args, **kwargs):
        if not is_privileged(self.caller):
            raise errors.PermissionError()
        qs = Invoice.objects.all()
        client = request.GET.get("client")
        if client:
            qs = qs.filter(client_id=client)
        return JsonResponse(
            {
                "invoices": [
                    {
                        "id": invoice.pk,
                        "client_name": invoice.client_name,
                        "start_date": invoice.start_date.isoformat(),
                        "end_date": invoice.end_date.isoformat(),
                        "total_value": str(invoice.total_value),
                        "total_time": invoice.total_time,
                    }
                    for invoice in qs
                ]
            }
        )

    def post(self, request, *args, **kwargs):
        payload = _payload(request)
        data = _valid(InvoiceRequestForm(payload))
        invoice = invoicing.create_invoice(
            self.caller, data["client"].pk, data["start_date"], data["end_date"], _extras(payload)
        )
        if invoice is None:
            return JsonResponse({"invoice": None, "message": "Nenhuma OS encontrada para o período."})
        return JsonResponse(invoice.as_document(), status=201)


class InvoiceDetailView(ServiceJsonMixin, View):
    def get(self, request, pk, *args, **kwargs):
        if not is_privileged(self.caller):
            raise errors.PermissionError()
        invoice = get_or_not_found(Invoice.objects.all(), pk, "Fatura não encontrada.")
        return JsonResponse(invoice.as_document())


class InvoiceShareView(ServiceJsonMixin, View):
    def get(self, request, pk, *args, **kwargs):
        if not is_privileged(self.caller):
            raise errors.PermissionError()
        invoice = get_or_not_found(Invoice.objects.select_related("client"), pk, "Fatura não encontrada.")
        contact = invoice.client.contact if invoice.client else ""
        return JsonResponse(
            sharing.share_message(DOCUMENT_INVOICE, invoice.pk, contact, f"Fatura #{invoice.pk}")
        )


class BudgetListCreateView(ServiceJsonMixin, View):
    def get(self, request, *args, **kwargs):
        if not is_privileged(self.caller):
            raise errors.PermissionError()
        qs = Budget.objects.all()
        status = request.GET.get("status")
        if status and status != "all":
            qs = qs.filter(status=status)
        return JsonResponse(
            {
                "budgets": [
                    {
                        "id": budget.pk,
                        "budget_number": budget.budget_number,
                        "client_name": budget.client_name,
                        "status": budget.status,
                        "total_value": str(budget.total_value),
                    }
                    for budget in qs
                ]
            }
        )

    def post(self, request, *args, **kwargs):
        payload = _payload(request)
        form = BudgetForm(payload)
        _valid(form)
        items = _rows(payload, "items", BudgetItemForm)
        budget = budgets.create_budget(self.caller, items, **service_kwargs(form))
        return JsonResponse(budget.as_document(), status=201)


class BudgetDetailView(ServiceJsonMixin, View):
    def get(self, request, pk, *args, **kwargs):
        if not is_privileged(self.caller):
            raise errors.PermissionError()
        budget = get_or_not_found(Budget.objects.all(), pk, "Orçamento não encontrado.")
        return JsonResponse(budget.as_document())


class BudgetItemsView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        payload = _payload(request)
        items = _rows(payload, "items", BudgetItemForm)
        budget = budgets.replace_budget_items(self.caller, pk, items)
        return JsonResponse(budget.as_document())


class BudgetStatusView(ServiceJsonMixin, View):
    def post(self, request, pk, *args, **kwargs):
        data = _valid(BudgetStatusForm(_payload(request)))
        budget = budgets.change_budget_status(self.caller, pk, data["status"])
        return JsonResponse(budget.as_document())


class BudgetShareView(ServiceJsonMixin, View):
    def get(self, request, pk, *args, **kwargs):
        if not is_privileged(self.caller):
            raise errors.PermissionError()
        budget = get_or_not_found(Budget.objects.all(), pk, "Orçamento não encontrado.")
        return JsonResponse(
            sharing.share_message(DOCUMENT_BUDGET, budget.pk, budget.client_contact, f"Orçamento {budget.budget_number}")
        )


class PublicDocumentView(View):
    """Documento compartilhado por link assinado, sem login."""

    document_models = {DOCUMENT_INVOICE: Invoice, DOCUMENT_BUDGET: Budget}

    def get(self, request, kind, token, *args, **kwargs):
        try:
            model = self.document_models.get(kind)
            if model is None:
                raise errors.NotFoundError("Documento não encontrado.")
            pk = sharing.read_document_token(token, kind)
            document = get_or_not_found(model.objects.all(), pk, "Documento não encontrado.")
        except errors.ServiceError as exc:
            return _error_response(exc)
        return JsonResponse(document.as_document())
