from datetime import date, datetime, timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model

from servicos.models import Client
from servicos.permissions import CallerContext
from servicos.services import orders, tasks


User = get_user_model()

T0 = datetime(2024, 3, 4, 9, 0)
MARCH_START = date(2024, 3, 1)
MARCH_END = date(2024, 3, 31)


def hours(value):
    return timedelta(hours=value)


class ServicosFixturesMixin:
    def setUp(self):
        super().setUp()
        self.admin = User.objects.create_user(username="admin", password="123", role=User.Role.ADMIN)
        self.manager = User.objects.create_user(username="gerente", password="123", role=User.Role.MANAGER)
        self.worker = User.objects.create_user(username="operario", password="123", role=User.Role.WORKER)
        self.other_worker = User.objects.create_user(username="operario2", password="123", role=User.Role.WORKER)
        self.admin_ctx = CallerContext.from_user(self.admin)
        self.manager_ctx = CallerContext.from_user(self.manager)
        self.worker_ctx = CallerContext.from_user(self.worker)
        self.other_worker_ctx = CallerContext.from_user(self.other_worker)
        self.customer = Client.objects.create(name="Metalúrgica Alfa", contact="(11) 98888-7777")

    def make_order(self, **data):
        data.setdefault("client_id", self.customer.pk)
        data.setdefault("service_description", "Portão metálico de correr")
        data.setdefault("sale_value", Decimal("300.00"))
        data.setdefault("service_start_date", date(2024, 3, 4))
        data.setdefault("service_end_date", date(2024, 3, 10))
        return orders.create_order(self.manager_ctx, **data)

    def make_task(self, order, worker=None, title="Solda"):
        worker = worker or self.worker
        return tasks.create_task(self.manager_ctx, order.pk, title=title, assigned_worker_id=worker.pk)
