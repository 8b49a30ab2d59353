import json

from django.test import TestCase
from django.urls import reverse

from servicos.models import Invoice, ServiceOrder, TaskTimeLog
from servicos.services.sharing import document_token

from .base import MARCH_END, MARCH_START, ServicosFixturesMixin


class JsonViewsTests(ServicosFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.order = self.make_order()
        self.task = self.make_task(self.order)

    def post_json(self, url, payload=None):
        return self.client.post(url, data=json.dumps(payload or {}), content_type="application/json")

    def test_exige_login(self):
        response = self.client.get(reverse("os_list"))
        self.assertEqual(response.status_code, 302)

    def test_gerente_abre_os(self):
        self.client.force_login(self.manager)
        response = self.post_json(
            reverse("os_list"),
            {"client": self.customer.pk, "service_description": "Escada metálica", "sale_value": "1200.00"},
        )
        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data["order_number"], "OS002")
        self.assertEqual(data["client_name"], "Metalúrgica Alfa")
        self.assertEqual(data["status"], ServiceOrder.Status.PENDING)

    def test_formulario_invalido(self):
        self.client.force_login(self.manager)
        response = self.post_json(reverse("os_list"), {"client": self.customer.pk})
        self.assertEqual(response.status_code, 400)
        self.assertIn("service_description", response.json()["fields"])

    def test_operario_nao_abre_os(self):
        self.client.force_login(self.worker)
        response = self.post_json(
            reverse("os_list"), {"client_name": "Avulso", "service_description": "Grade"}
        )
        self.assertEqual(response.status_code, 403)

    def test_cronometro_pela_api(self):
        self.client.force_login(self.worker)
        response = self.post_json(reverse("timer_start", args=[self.task.pk]))
        self.assertEqual(response.status_code, 201)
        log_id = response.json()["id"]

        response = self.post_json(reverse("timer_start", args=[self.task.pk]))
        self.assertEqual(response.status_code, 409)
        self.assertIn("error", response.json())

        state = self.client.get(reverse("timer_state", args=[self.task.pk])).json()
        self.assertTrue(state["is_running"])
        self.assertEqual(state["open_log_id"], log_id)

        response = self.post_json(reverse("timer_stop", args=[log_id]), {"complete_task": True})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["order_status"], ServiceOrder.Status.QUALITY_CONTROL)
        self.assertFalse(TaskTimeLog.objects.filter(end_time__isnull=True).exists())

        response = self.post_json(reverse("timer_stop", args=[log_id]))
        self.assertEqual(response.status_code, 404)

    def test_operario_nao_muda_status_da_os(self):
        self.client.force_login(self.worker)
        response = self.post_json(reverse("os_status", args=[self.order.pk]), {"status": "planning"})
        self.assertEqual(response.status_code, 403)

    def test_transicao_invalida(self):
        self.client.force_login(self.manager)
        response = self.post_json(reverse("os_transition", args=[self.order.pk]), {"action": "approve_quality"})
        self.assertEqual(response.status_code, 409)

    def test_minhas_tarefas(self):
        self.client.force_login(self.worker)
        data = self.client.get(reverse("my_tasks")).json()
        self.assertEqual([task["id"] for task in data["tasks"]], [self.task.pk])
        self.assertEqual(data["tasks"][0]["order_number"], self.order.order_number)

    def test_chamados_pela_api(self):
        self.client.force_login(self.worker)
        response = self.post_json(reverse("os_call", args=[self.order.pk]), {"reason": "Falta chapa"})
        self.assertEqual(response.status_code, 201)
        call_id = response.json()["id"]
        self.assertEqual(response.json()["order_number"], self.order.order_number)
        self.assertEqual(self.post_json(reverse("call_resolve", args=[call_id])).status_code, 403)

        self.client.force_login(self.manager)
        data = self.client.get(reverse("call_list"), {"resolved": "false"}).json()
        self.assertEqual([call["id"] for call in data["calls"]], [call_id])
        response = self.post_json(reverse("call_resolve", args=[call_id]))
        self.assertTrue(response.json()["resolved"])
        self.assertEqual(self.post_json(reverse("call_resolve", args=[call_id])).status_code, 409)

    def test_detalhe_da_os_para_operario(self):
        self.client.force_login(self.other_worker)
        response = self.client.get(reverse("os_detail", args=[self.order.pk]))
        self.assertEqual(response.status_code, 404)
        self.client.force_login(self.worker)
        data = self.client.get(reverse("os_detail", args=[self.order.pk])).json()
        self.assertEqual(len(data["tasks"]), 1)
        self.assertNotIn("history", data)

    def test_previa_e_geracao_de_fatura(self):
        self.client.force_login(self.worker)
        params = {"client": self.customer.pk, "start_date": "01/03/2024", "end_date": "31/03/2024"}
        self.assertEqual(self.client.get(reverse("invoice_preview"), params).status_code, 403)

        self.client.force_login(self.manager)
        preview = self.client.get(reverse("invoice_preview"), params).json()
        self.assertEqual(preview["total_value"], "300.00")

        response = self.post_json(
            reverse("invoice_list"),
            {
                "client": self.customer.pk,
                "start_date": MARCH_START.isoformat(),
                "end_date": MARCH_END.isoformat(),
                "extras": [{"description": "Frete", "value": 50}, {"description": "Taxa", "value": 20}],
            },
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["total_value"], "370.00")

        response = self.post_json(
            reverse("invoice_list"),
            {"client": self.customer.pk, "start_date": MARCH_START.isoformat(), "end_date": MARCH_END.isoformat()},
        )
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()["invoice"])

    def test_periodo_invertido(self):
        self.client.force_login(self.manager)
        response = self.post_json(
            reverse("invoice_list"),
            {"client": self.customer.pk, "start_date": "2024-03-31", "end_date": "2024-03-01"},
        )
        self.assertEqual(response.status_code, 400)

    def test_link_publico_da_fatura(self):
        self.client.force_login(self.manager)
        invoice_id = self.post_json(
            reverse("invoice_list"),
            {"client": self.customer.pk, "start_date": "2024-03-01", "end_date": "2024-03-31"},
        ).json()["id"]
        share = self.client.get(reverse("invoice_share", args=[invoice_id])).json()
        self.assertEqual(share["recipient"], "5511988887777")
        self.assertTrue(share["whatsapp_url"].startswith("https://wa.me/5511988887777"))

        self.client.logout()
        token = document_token("invoice", invoice_id)
        response = self.client.get(reverse("public_document", args=["invoice", token]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["id"], invoice_id)

        response = self.client.get(reverse("public_document", args=["budget", token]))
        self.assertEqual(response.status_code, 404)
        response = self.client.get(reverse("public_document", args=["invoice", token + "x"]))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(Invoice.objects.count(), 1)

    def test_orcamento_pela_api(self):
        self.client.force_login(self.manager)
        response = self.post_json(
            reverse("budget_list"),
            {
                "client": self.customer.pk,
                "items": [
                    {"service_name": "Corte a laser", "quantity": 2, "unit_price": "10.50"},
                    {"service_name": "Dobra", "quantity": 1, "unit_price": 5},
                ],
            },
        )
        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data["budget_number"], "ORC001")
        self.assertEqual(data["total_value"], "26.00")

        response = self.post_json(reverse("budget_status", args=[data["id"]]), {"status": "approved"})
        self.assertEqual(response.status_code, 409)
        response = self.post_json(reverse("budget_status", args=[data["id"]]), {"status": "sent"})
        self.assertEqual(response.json()["status"], "sent")

    def test_item_de_orcamento_negativo(self):
        self.client.force_login(self.manager)
        response = self.post_json(
            reverse("budget_list"),
            {"client": self.customer.pk, "items": [{"service_name": "Solda", "quantity": -1, "unit_price": 5}]},
        )
        self.assertEqual(response.status_code, 400)
