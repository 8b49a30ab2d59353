from types import SimpleNamespace

from django.db import IntegrityError, transaction
from django.test import SimpleTestCase, TestCase

from servicos import errors
from servicos.models import ServiceOrder, ServiceOrderTask, TaskTimeLog
from servicos.services import state_machine, tasks, time_tracking

from .base import T0, ServicosFixturesMixin, hours


class AccumulatedDurationTests(SimpleTestCase):
    def log(self, start, end=None, hours_worked=None):
        return SimpleNamespace(start_time=start, end_time=end, hours_worked=hours_worked)

    def test_soma_intervalos_fechados(self):
        logs = [self.log(T0, T0 + hours(1)), self.log(T0 + hours(2), T0 + hours(2.5))]
        self.assertAlmostEqual(time_tracking.accumulated_duration(logs, now=T0 + hours(8)), 1.5)

    def test_intervalo_aberto_conta_ate_agora(self):
        logs = [self.log(T0, T0 + hours(1)), self.log(T0 + hours(3))]
        self.assertAlmostEqual(time_tracking.accumulated_duration(logs, now=T0 + hours(4.25)), 2.25)
        self.assertAlmostEqual(
            time_tracking.accumulated_duration(logs, now=T0 + hours(4.25), include_open=False), 1.0
        )

    def test_horas_corrigidas_prevalecem(self):
        logs = [self.log(T0, T0 + hours(1), hours_worked=3.0)]
        self.assertAlmostEqual(time_tracking.accumulated_duration(logs, now=T0), 3.0)

    def test_sem_registros(self):
        self.assertEqual(time_tracking.accumulated_duration([], now=T0), 0.0)

    def test_estado_do_cronometro_recalcula_sem_banco(self):
        state = time_tracking.TimerState(closed_hours=1.0, open_starts=(T0,), open_log_id=7)
        self.assertTrue(state.is_running)
        self.assertAlmostEqual(state.total(T0 + hours(0.5)), 1.5)
        self.assertAlmostEqual(state.total(T0 + hours(2)), 3.0)
        self.assertEqual(state.as_dict(T0)["open_log_id"], 7)


class TimerTests(ServicosFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.order = self.make_order()
        self.task = self.make_task(self.order)

    def test_iniciar_cronometro_coloca_os_em_producao(self):
        log = time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        self.assertTrue(log.is_open)
        self.order.refresh_from_db()
        self.task.refresh_from_db()
        self.assertEqual(self.order.status, ServiceOrder.Status.PRODUCTION)
        self.assertEqual(self.task.status, ServiceOrderTask.Status.IN_PROGRESS)

    def test_nao_permite_dois_cronometros_abertos(self):
        time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        with self.assertRaises(errors.ConflictError):
            time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0 + hours(1))
        self.assertEqual(TaskTimeLog.objects.filter(task=self.task, end_time__isnull=True).count(), 1)

    def test_restricao_do_banco_impede_segundo_registro_aberto(self):
        TaskTimeLog.objects.create(task=self.task, worker=self.worker, start_time=T0)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                TaskTimeLog.objects.create(task=self.task, worker=self.worker, start_time=T0 + hours(1))

    def test_parar_cronometro_grava_horas_e_para_a_os(self):
        log = time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        log = time_tracking.stop_timer(self.worker_ctx, log.pk, description="Corte", now=T0 + hours(2.5))
        self.assertAlmostEqual(log.hours_worked, 2.5)
        self.assertEqual(log.description, "Corte")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, ServiceOrder.Status.STOPPED)
        self.assertAlmostEqual(time_tracking.task_duration(self.task.pk), 2.5)

    def test_parar_duas_vezes_falha(self):
        log = time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        time_tracking.stop_timer(self.worker_ctx, log.pk, now=T0 + hours(1))
        with self.assertRaises(errors.NotFoundError):
            time_tracking.stop_timer(self.worker_ctx, log.pk, now=T0 + hours(2))
        log.refresh_from_db()
        self.assertAlmostEqual(log.hours_worked, 1.0)

    def test_parar_e_concluir_tarefa_envia_para_qualidade(self):
        log = time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        time_tracking.stop_timer(self.worker_ctx, log.pk, complete_task=True, now=T0 + hours(1))
        self.task.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.task.status, ServiceOrderTask.Status.COMPLETED)
        self.assertEqual(self.order.status, ServiceOrder.Status.QUALITY_CONTROL)

    def test_concluir_tarefa_fecha_cronometro_aberto(self):
        log = time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        tasks.set_task_status(self.worker_ctx, self.task.pk, ServiceOrderTask.Status.COMPLETED, now=T0 + hours(2))
        log.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(log.end_time, T0 + hours(2))
        self.assertAlmostEqual(log.hours_worked, 2.0)
        self.assertFalse(TaskTimeLog.objects.filter(task=self.task, end_time__isnull=True).exists())
        self.assertEqual(self.order.status, ServiceOrder.Status.QUALITY_CONTROL)
        self.assertAlmostEqual(time_tracking.task_duration(self.task.pk, now=T0 + hours(10)), 2.0)

    def test_cancelar_tarefa_fecha_cronometros_de_todos(self):
        time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        time_tracking.start_timer(self.manager_ctx, self.task.pk, worker_id=self.other_worker.pk, now=T0 + hours(1))
        tasks.set_task_status(self.manager_ctx, self.task.pk, ServiceOrderTask.Status.CANCELLED, now=T0 + hours(3))
        self.assertFalse(TaskTimeLog.objects.filter(end_time__isnull=True).exists())
        self.assertAlmostEqual(time_tracking.order_duration(self.order.pk, now=T0 + hours(10)), 5.0)

    def test_retomar_apos_parada_volta_para_producao(self):
        log = time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        time_tracking.stop_timer(self.worker_ctx, log.pk, now=T0 + hours(1))
        time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0 + hours(2))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, ServiceOrder.Status.PRODUCTION)
        self.assertAlmostEqual(time_tracking.task_duration(self.task.pk, now=T0 + hours(3)), 2.0)

    def test_outro_operario_nao_cronometra_tarefa_alheia(self):
        with self.assertRaises(errors.PermissionError):
            time_tracking.start_timer(self.other_worker_ctx, self.task.pk, now=T0)
        with self.assertRaises(errors.PermissionError):
            time_tracking.start_timer(self.worker_ctx, self.task.pk, worker_id=self.other_worker.pk, now=T0)

    def test_operario_nao_para_cronometro_alheio(self):
        log = time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        with self.assertRaises(errors.PermissionError):
            time_tracking.stop_timer(self.other_worker_ctx, log.pk, now=T0 + hours(1))

    def test_gerente_cronometra_por_outro_operario(self):
        time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        time_tracking.start_timer(self.manager_ctx, self.task.pk, worker_id=self.other_worker.pk, now=T0 + hours(1))
        self.assertEqual(TaskTimeLog.objects.filter(task=self.task, end_time__isnull=True).count(), 2)
        self.assertAlmostEqual(time_tracking.task_duration(self.task.pk, now=T0 + hours(2)), 3.0)
        state = time_tracking.timer_state(self.task.pk, worker_id=self.worker.pk)
        self.assertEqual(len(state.open_starts), 1)
        self.assertAlmostEqual(state.total(T0 + hours(2)), 2.0)

    def test_tarefa_concluida_nao_pode_ser_cronometrada(self):
        tasks.set_task_status(self.worker_ctx, self.task.pk, ServiceOrderTask.Status.COMPLETED)
        with self.assertRaises(errors.ConflictError):
            time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)

    def test_os_cancelada_nao_pode_ser_cronometrada(self):
        state_machine.change_status(self.manager_ctx, self.order.pk, ServiceOrder.Status.CANCELLED)
        with self.assertRaises(errors.ConflictError):
            time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)

    def test_tarefa_inexistente(self):
        with self.assertRaises(errors.NotFoundError):
            time_tracking.start_timer(self.worker_ctx, 9999, now=T0)
        with self.assertRaises(errors.NotFoundError):
            time_tracking.timer_state(9999)

    def test_duracao_da_os_soma_todas_as_tarefas(self):
        second = self.make_task(self.order, title="Pintura")
        log = time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        time_tracking.stop_timer(self.worker_ctx, log.pk, now=T0 + hours(1))
        log = time_tracking.start_timer(self.worker_ctx, second.pk, now=T0 + hours(1))
        time_tracking.stop_timer(self.worker_ctx, log.pk, now=T0 + hours(1.75))
        self.assertAlmostEqual(time_tracking.order_duration(self.order.pk), 1.75)

    def test_correcao_manual_de_horas(self):
        log = time_tracking.start_timer(self.worker_ctx, self.task.pk, now=T0)
        with self.assertRaises(errors.ConflictError):
            time_tracking.correct_hours(self.manager_ctx, log.pk, 3)
        time_tracking.stop_timer(self.worker_ctx, log.pk, now=T0 + hours(1))
        with self.assertRaises(errors.PermissionError):
            time_tracking.correct_hours(self.worker_ctx, log.pk, 3)
        with self.assertRaises(errors.ValidationError):
            time_tracking.correct_hours(self.manager_ctx, log.pk, -1)
        time_tracking.correct_hours(self.manager_ctx, log.pk, 3)
        self.assertAlmostEqual(time_tracking.task_duration(self.task.pk), 3.0)
