from decimal import Decimal

from django.core.management.base import BaseCommand

from servicos.models import Client, InventoryItem, ServiceOrder, User
from servicos.permissions import CallerContext, setup_roles, sync_user_group
from servicos.services import budgets, orders, tasks


class Command(BaseCommand):
    help = "Cria dados de demonstração (usuários, cliente, OS com tarefas e orçamento)."

    def _user(self, username, role, **extra):
        user, created = User.objects.get_or_create(
            username=username,
            defaults={"email": f"{username}@demo.com", "role": role, **extra},
        )
        if created:
            user.set_password(f"{username}123")
            user.save()
        sync_user_group(user)
        return user

    def handle(self, *args, **options):
        setup_roles()
        admin = self._user("admin", User.Role.ADMIN, is_staff=True, is_superuser=True)
        self._user("gerente", User.Role.MANAGER, is_staff=True)
        worker = self._user("operario", User.Role.WORKER, first_name="Operário")
        context = CallerContext.from_user(admin)

        client, _ = Client.objects.get_or_create(
            name="Cliente Demo",
            defaults={"contact": "11988887777", "address": "Rua Demo, 100"},
        )
        InventoryItem.objects.get_or_create(name="Chapa de aço 2mm", defaults={"current_quantity": Decimal("50")})

        if not ServiceOrder.objects.filter(client=client).exists():
            order = orders.create_order(
                context,
                client_id=client.pk,
                service_description="Fabricação e instalação de portão metálico.",
                sale_value=Decimal("2500.00"),
                assigned_worker_id=worker.pk,
            )
            tasks.create_task(context, order.pk, title="Corte das chapas", assigned_worker_id=worker.pk)
            tasks.create_task(context, order.pk, title="Solda e pintura", assigned_worker_id=worker.pk)
            budgets.create_budget(
                context,
                [
                    {"service_name": "Portão metálico", "quantity": 1, "unit_price": "2200.00"},
                    {"service_name": "Instalação", "quantity": 1, "unit_price": "300.00"},
                ],
                client_id=client.pk,
                description="Portão de correr 4m.",
            )

        self.stdout.write(self.style.SUCCESS("Dados de demonstração criados."))
        self.stdout.write(self.style.SUCCESS("Usuários: admin/admin123, gerente/gerente123, operario/operario123"))
