from django.core.management.base import BaseCommand

from servicos.services.budgets import expire_budgets


class Command(BaseCommand):
    help = "Marca como expirados os orcamentos enviados com validade vencida."

    def handle(self, *args, **options):
        count = expire_budgets()
        self.stdout.write(self.style.SUCCESS(f"{count} orcamento(s) expirado(s)."))
