from django import forms
from django.contrib.auth import get_user_model

from .models import Budget, BudgetItem, Client, InventoryItem, ServiceOrder, ServiceOrderTask
from .services.state_machine import Action


User = get_user_model()

DATE_FORMATS = ["%d/%m/%Y", "%Y-%m-%d"]


def service_kwargs(form) -> dict:
    """Converte ``cleaned_data`` em argumentos da camada de serviço (FK -> ``<campo>_id``)."""
    data = {}
    for name, value in form.cleaned_data.items():
        if name not in form.data:
            continue
        field = form.fields[name]
        if isinstance(field, forms.ModelChoiceField):
            data[f"{name}_id"] = value.pk if value else None
        else:
            data[name] = value
    return data


class PartialFormMixin:
    """Com ``partial=True`` nenhum campo é obrigatório (edição de campos avulsos)."""

    optional_fields = ()

    def __init__(self, *args, partial=False, **kwargs):
        super().__init__(*args, **kwargs)
        self.partial = partial
        for name, field in self.fields.items():
            if partial or name in self.optional_fields:
                field.required = False


class DateInputsMixin:
    date_fields = ()

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        for name in self.date_fields:
            if name in self.fields:
                self.fields[name].input_formats = DATE_FORMATS


class ServiceOrderForm(PartialFormMixin, DateInputsMixin, forms.ModelForm):
    date_fields = ("opening_date", "deadline", "service_start_date", "service_end_date")
    optional_fields = ("client_name", "opening_date", "urgency")

    class Meta:
        model = ServiceOrder
        fields = [
            "client",
            "client_name",
            "client_contact",
            "client_address",
            "opening_date",
            "service_description",
            "sale_value",
            "urgency",
            "assigned_worker",
            "deadline",
            "service_start_date",
            "service_end_date",
        ]
        labels = {
            "service_description": "Descrição do serviço",
            "sale_value": "Valor de venda",
            "assigned_worker": "Operário responsável",
        }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["assigned_worker"].queryset = User.objects.filter(is_active=True)

    def clean(self):
        cleaned = super().clean()
        if not cleaned.get("client") and not (cleaned.get("client_name") or "").strip():
            if not self.partial:
                self.add_error("client_name", "Informe o cliente.")
        start, end = cleaned.get("service_start_date"), cleaned.get("service_end_date")
        if start and end and start > end:
            self.add_error("service_end_date", "Data de início não pode ser maior que a data final.")
        return cleaned


class ServiceOrderTaskForm(PartialFormMixin, forms.ModelForm):
    optional_fields = ("priority",)

    class Meta:
        model = ServiceOrderTask
        fields = ["title", "description", "assigned_worker", "priority", "estimated_hours"]
        labels = {"title": "Título", "estimated_hours": "Horas estimadas"}

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["assigned_worker"].queryset = User.objects.filter(is_active=True)


class TaskStatusForm(forms.Form):
    status = forms.ChoiceField(choices=ServiceOrderTask.Status.choices)


class StopTimerForm(forms.Form):
    description = forms.CharField(required=False, widget=forms.Textarea)
    complete_task = forms.BooleanField(required=False)


class CorrectHoursForm(forms.Form):
    hours_worked = forms.FloatField(min_value=0)


class StartTimerForm(forms.Form):
    worker = forms.ModelChoiceField(queryset=User.objects.filter(is_active=True), required=False)


class OrderStatusForm(forms.Form):
    status = forms.ChoiceField(choices=ServiceOrder.Status.choices)
    note = forms.CharField(required=False)


class OrderTransitionForm(forms.Form):
    action = forms.ChoiceField(choices=Action.choices)


class ObservationForm(forms.Form):
    text = forms.CharField(widget=forms.Textarea)


class CallForm(forms.Form):
    reason = forms.CharField(label="Motivo", widget=forms.Textarea)


class InvoiceRequestForm(DateInputsMixin, forms.Form):
    date_fields = ("start_date", "end_date")

    client = forms.ModelChoiceField(queryset=Client.objects.all(), label="Cliente")
    start_date = forms.DateField(label="Data inicial")
    end_date = forms.DateField(label="Data final")

    def clean(self):
        cleaned = super().clean()
        start, end = cleaned.get("start_date"), cleaned.get("end_date")
        if start and end and start > end:
            raise forms.ValidationError("Data de início não pode ser maior que a data final.")
        return cleaned


class InvoiceExtraForm(forms.Form):
    description = forms.CharField(required=False, max_length=255)
    value = forms.DecimalField(required=False, max_digits=12, decimal_places=2)


class BudgetForm(DateInputsMixin, forms.ModelForm):
    date_fields = ("valid_until",)

    class Meta:
        model = Budget
        fields = ["client", "client_name", "client_contact", "client_address", "description", "valid_until"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["client_name"].required = False


class BudgetItemForm(forms.ModelForm):
    class Meta:
        model = BudgetItem
        fields = ["service_name", "description", "quantity", "unit_price"]
        labels = {"service_name": "Serviço", "quantity": "Quantidade", "unit_price": "Preço unitário"}


class BudgetStatusForm(forms.Form):
    status = forms.ChoiceField(choices=Budget.Status.choices)


class ProductUsageForm(forms.Form):
    item = forms.ModelChoiceField(queryset=InventoryItem.objects.all(), label="Item")
    quantity = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0)

    def clean_quantity(self):
        quantity = self.cleaned_data["quantity"]
        if quantity <= 0:
            raise forms.ValidationError("A quantidade deve ser maior que zero.")
        return quantity
