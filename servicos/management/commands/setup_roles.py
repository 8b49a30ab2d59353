from django.core.management.base import BaseCommand

from servicos.models import User
from servicos.permissions import setup_roles, sync_user_group


class Command(BaseCommand):
    help = "Cria/atualiza os grupos e permissoes padrao (Administrador/Gerente/Operario)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--sync-users",
            action="store_true",
            help="Atualiza o grupo de cada usuario de acordo com o perfil.",
        )

    def handle(self, *args, **options):
        summary = setup_roles()
        self.stdout.write(self.style.SUCCESS("Grupos e permissoes configurados."))
        for group_name, count in summary.items():
            self.stdout.write(self.style.SUCCESS(f"{group_name}: {count} permissoes"))
        if options["sync_users"]:
            users = User.objects.all()
            for user in users:
                sync_user_group(user)
            self.stdout.write(self.style.SUCCESS(f"{users.count()} usuarios sincronizados."))
