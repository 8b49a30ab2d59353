from decimal import Decimal

from django.contrib.auth.models import Group
from django.test import SimpleTestCase, TestCase, override_settings

from servicos import errors
from servicos.models import InventoryItem, InventoryMovement, ServiceOrder, ServiceOrderLog
from servicos.permissions import ROLE_MANAGER, ROLE_WORKER, CallerContext, setup_roles, sync_user_group
from servicos.services import get_or_not_found, inventory, invoicing, orders, orders_visible_to, state_machine, tasks
from servicos.services.numbering import format_number, next_order_number
from servicos.services.sharing import whatsapp_number

from .base import ServicosFixturesMixin, User


class FormatTests(SimpleTestCase):
    def test_formato_do_numero(self):
        self.assertEqual(format_number("OS", 1, padding=3), "OS001")
        self.assertEqual(format_number("OS", 1234, padding=3), "OS1234")

    def test_numero_whatsapp(self):
        self.assertEqual(whatsapp_number("(11) 98888-7777"), "5511988887777")
        self.assertEqual(whatsapp_number("55 11 98888-7777"), "5511988887777")
        self.assertEqual(whatsapp_number(""), "")


class NumberingTests(ServicosFixturesMixin, TestCase):
    def test_numeros_sequenciais(self):
        numbers = [self.make_order().order_number for _ in range(3)]
        self.assertEqual(numbers, ["OS001", "OS002", "OS003"])

    @override_settings(ORDER_NUMBER_PREFIX="PED", DOCUMENT_NUMBER_PADDING=4)
    def test_prefixo_configuravel(self):
        self.assertEqual(next_order_number(), "PED0001")

    def test_numero_nao_reutilizado_apos_exclusao(self):
        first = self.make_order()
        orders.delete_order(self.admin_ctx, first.pk)
        self.assertEqual(self.make_order().order_number, "OS002")


class RoleGateTests(ServicosFixturesMixin, TestCase):
    def test_superusuario_e_administrador(self):
        root = User.objects.create_superuser(username="root", password="123", email="root@test.com")
        self.assertTrue(CallerContext.from_user(root).is_admin)

    def test_operario_nao_abre_os(self):
        with self.assertRaises(errors.PermissionError):
            orders.create_order(self.worker_ctx, client_name="Avulso", service_description="Grade")
        self.assertFalse(ServiceOrder.objects.exists())

    def test_apenas_administrador_exclui(self):
        order = self.make_order()
        with self.assertRaises(errors.PermissionError):
            orders.delete_order(self.manager_ctx, order.pk)
        orders.delete_order(self.admin_ctx, order.pk)
        self.assertFalse(ServiceOrder.objects.filter(pk=order.pk).exists())

    def test_operario_ve_apenas_suas_os(self):
        mine = self.make_order(assigned_worker_id=self.worker.pk)
        through_task = self.make_order()
        self.make_task(through_task)
        other = self.make_order(assigned_worker_id=self.other_worker.pk)
        visible = set(orders_visible_to(self.worker_ctx).values_list("pk", flat=True))
        self.assertEqual(visible, {mine.pk, through_task.pk})
        with self.assertRaises(errors.NotFoundError):
            get_or_not_found(orders_visible_to(self.worker_ctx), other.pk)
        self.assertEqual(orders_visible_to(self.manager_ctx).count(), 3)

    def test_minhas_tarefas(self):
        order = self.make_order()
        mine = self.make_task(order)
        self.make_task(order, worker=self.other_worker)
        self.assertEqual(list(tasks.tasks_for_worker(self.worker_ctx)), [mine])
        self.assertEqual(list(tasks.tasks_for_worker(self.worker_ctx, status="completed")), [])

    def test_grupos_padrao(self):
        summary = setup_roles()
        self.assertEqual(set(summary), {"Administrador", "Gerente", "Operario"})
        self.worker.role = User.Role.MANAGER
        self.worker.save()
        sync_user_group(self.worker)
        self.assertEqual(list(self.worker.groups.values_list("name", flat=True)), [ROLE_MANAGER])
        self.assertFalse(self.worker.groups.filter(name=ROLE_WORKER).exists())
        self.assertTrue(Group.objects.get(name=ROLE_WORKER).permissions.filter(codename="add_tasktimelog").exists())


class OrderStoreTests(ServicosFixturesMixin, TestCase):
    def test_copia_dados_do_cliente(self):
        order = self.make_order(assigned_worker_id=self.worker.pk)
        self.assertEqual(order.client_name, "Metalúrgica Alfa")
        self.assertEqual(order.client_contact, "(11) 98888-7777")
        actions = list(order.logs.values_list("action", flat=True))
        self.assertCountEqual(actions, [ServiceOrderLog.Action.CREATE, ServiceOrderLog.Action.ASSIGN])

    def test_status_inicial(self):
        order = self.make_order(status=ServiceOrder.Status.RECEIVED)
        self.assertEqual(order.status, ServiceOrder.Status.RECEIVED)
        with self.assertRaises(errors.ValidationError):
            self.make_order(status=ServiceOrder.Status.PRODUCTION)

    def test_validacoes(self):
        with self.assertRaises(errors.ValidationError):
            self.make_order(service_description="  ")
        with self.assertRaises(errors.ValidationError):
            self.make_order(sale_value=Decimal("-1"))
        with self.assertRaises(errors.ValidationError):
            self.make_order(client_id=None, client_name="")
        with self.assertRaises(errors.NotFoundError):
            self.make_order(client_id=9999)

    def test_edicao_nao_altera_status(self):
        order = self.make_order()
        with self.assertRaises(errors.ValidationError):
            orders.update_order(self.manager_ctx, order.pk, status=ServiceOrder.Status.COMPLETED)
        order = orders.update_order(self.manager_ctx, order.pk, sale_value=Decimal("450.00"))
        self.assertEqual(order.sale_value, Decimal("450.00"))

    def test_os_faturada_nao_e_editada_nem_excluida(self):
        order = self.make_order()
        task = self.make_task(order)
        tasks.set_task_status(self.worker_ctx, task.pk, task.Status.COMPLETED)
        state_machine.transition(self.manager_ctx, order.pk, state_machine.Action.APPROVE_QUALITY)
        state_machine.transition(self.manager_ctx, order.pk, state_machine.Action.SCHEDULE_INSTALLATION)
        invoicing.immediate_invoice(self.manager_ctx, order.pk)
        with self.assertRaises(errors.ConflictError):
            orders.update_order(self.manager_ctx, order.pk, sale_value=Decimal("1.00"))
        with self.assertRaises(errors.ConflictError):
            orders.delete_order(self.admin_ctx, order.pk)

    def test_observacoes(self):
        order = self.make_order(assigned_worker_id=self.worker.pk)
        observation = orders.add_observation(self.worker_ctx, order.pk, " Cliente pediu pintura preta ")
        self.assertEqual(observation.text, "Cliente pediu pintura preta")
        with self.assertRaises(errors.ValidationError):
            orders.add_observation(self.worker_ctx, order.pk, "")
        with self.assertRaises(errors.NotFoundError):
            orders.add_observation(self.other_worker_ctx, order.pk, "Oi")


class InventoryTests(ServicosFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.item = InventoryItem.objects.create(name="Chapa 2mm", current_quantity=Decimal("10"))
        self.task = self.make_task(self.make_order())

    def test_consumo_baixa_estoque(self):
        inventory.record_product_usage(self.worker_ctx, self.task.pk, self.item.pk, "2.5")
        self.item.refresh_from_db()
        self.assertEqual(self.item.current_quantity, Decimal("7.50"))
        movement = InventoryMovement.objects.get()
        self.assertEqual(movement.movement_type, InventoryMovement.Type.OUT)
        self.assertEqual(movement.service_order_id, self.task.order_id)

    def test_consumo_acima_do_estoque(self):
        with self.assertRaises(errors.ConflictError):
            inventory.record_product_usage(self.worker_ctx, self.task.pk, self.item.pk, 11)
        self.item.refresh_from_db()
        self.assertEqual(self.item.current_quantity, Decimal("10"))

    def test_entrada_de_estoque(self):
        with self.assertRaises(errors.PermissionError):
            inventory.register_stock_entry(self.worker_ctx, self.item.pk, 5)
        inventory.register_stock_entry(self.manager_ctx, self.item.pk, 5)
        self.item.refresh_from_db()
        self.assertEqual(self.item.current_quantity, Decimal("15"))
