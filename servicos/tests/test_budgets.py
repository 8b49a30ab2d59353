from datetime import date
from decimal import Decimal

from django.test import SimpleTestCase, TestCase

from servicos import errors
from servicos.models import Budget
from servicos.services import budgets

from .base import ServicosFixturesMixin


ITEMS = [
    {"service_name": "Corte a laser", "quantity": 2, "unit_price": "10.50"},
    {"service_name": "Dobra", "quantity": 1, "unit_price": 5},
]


class BudgetTotalTests(SimpleTestCase):
    def test_total_dos_itens(self):
        self.assertEqual(budgets.budget_total(budgets.clean_items(ITEMS)), Decimal("26.00"))

    def test_sem_itens(self):
        self.assertEqual(budgets.budget_total([]), Decimal("0.00"))

    def test_valores_negativos_ou_invalidos(self):
        with self.assertRaises(errors.ValidationError):
            budgets.clean_items([{"service_name": "Solda", "quantity": -1, "unit_price": 10}])
        with self.assertRaises(errors.ValidationError):
            budgets.clean_items([{"service_name": "Solda", "quantity": 1, "unit_price": "abc"}])
        with self.assertRaises(errors.ValidationError):
            budgets.clean_items([{"service_name": "", "quantity": 1, "unit_price": 10}])


class BudgetWorkflowTests(ServicosFixturesMixin, TestCase):
    def test_cria_orcamento_numerado(self):
        budget = budgets.create_budget(self.manager_ctx, ITEMS, client_id=self.customer.pk)
        self.assertEqual(budget.budget_number, "ORC001")
        self.assertEqual(budget.client_name, "Metalúrgica Alfa")
        self.assertEqual(budget.total_value, Decimal("26.00"))
        self.assertEqual(
            [item.total_price for item in budget.items.all()], [Decimal("21.00"), Decimal("5.00")]
        )
        second = budgets.create_budget(self.manager_ctx, [], client_name="Avulso")
        self.assertEqual(second.budget_number, "ORC002")

    def test_operario_nao_cria(self):
        with self.assertRaises(errors.PermissionError):
            budgets.create_budget(self.worker_ctx, ITEMS, client_id=self.customer.pk)
        self.assertFalse(Budget.objects.exists())

    def test_exige_cliente(self):
        with self.assertRaises(errors.ValidationError):
            budgets.create_budget(self.manager_ctx, ITEMS)

    def test_substitui_itens_apenas_em_rascunho(self):
        budget = budgets.create_budget(self.manager_ctx, ITEMS, client_id=self.customer.pk)
        budget = budgets.replace_budget_items(
            self.manager_ctx, budget.pk, [{"service_name": "Pintura", "quantity": 3, "unit_price": "7.25"}]
        )
        self.assertEqual(budget.total_value, Decimal("21.75"))
        self.assertEqual(budget.items.count(), 1)
        budgets.change_budget_status(self.manager_ctx, budget.pk, Budget.Status.SENT)
        with self.assertRaises(errors.ConflictError):
            budgets.replace_budget_items(self.manager_ctx, budget.pk, ITEMS)

    def test_ciclo_de_status(self):
        budget = budgets.create_budget(self.manager_ctx, ITEMS, client_id=self.customer.pk)
        with self.assertRaises(errors.ConflictError):
            budgets.change_budget_status(self.manager_ctx, budget.pk, Budget.Status.APPROVED)
        budgets.change_budget_status(self.manager_ctx, budget.pk, Budget.Status.SENT)
        budget = budgets.change_budget_status(self.manager_ctx, budget.pk, Budget.Status.APPROVED)
        self.assertEqual(budget.status, Budget.Status.APPROVED)
        with self.assertRaises(errors.ConflictError):
            budgets.change_budget_status(self.manager_ctx, budget.pk, Budget.Status.REJECTED)

    def test_envio_exige_itens(self):
        budget = budgets.create_budget(self.manager_ctx, [], client_id=self.customer.pk)
        with self.assertRaises(errors.ValidationError):
            budgets.change_budget_status(self.manager_ctx, budget.pk, Budget.Status.SENT)

    def test_expira_orcamentos_vencidos(self):
        expired = budgets.create_budget(
            self.manager_ctx, ITEMS, client_id=self.customer.pk, valid_until=date(2024, 3, 1)
        )
        valid = budgets.create_budget(
            self.manager_ctx, ITEMS, client_id=self.customer.pk, valid_until=date(2024, 4, 1)
        )
        draft = budgets.create_budget(
            self.manager_ctx, ITEMS, client_id=self.customer.pk, valid_until=date(2024, 3, 1)
        )
        for budget in (expired, valid):
            budgets.change_budget_status(self.manager_ctx, budget.pk, Budget.Status.SENT)
        self.assertEqual(budgets.expire_budgets(today=date(2024, 3, 15)), 1)
        statuses = dict(Budget.objects.values_list("pk", "status"))
        self.assertEqual(statuses[expired.pk], Budget.Status.EXPIRED)
        self.assertEqual(statuses[valid.pk], Budget.Status.SENT)
        self.assertEqual(statuses[draft.pk], Budget.Status.DRAFT)

    def test_documento(self):
        budget = budgets.create_budget(self.manager_ctx, ITEMS, client_id=self.customer.pk)
        document = budget.as_document()
        self.assertEqual(document["total_value"], "26.00")
        self.assertEqual(len(document["items"]), 2)
