"""WSGI config for ProjetoServicos."""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ProjetoServicos.settings")

application = get_wsgi_application()
