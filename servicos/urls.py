from django.urls import path

from . import views

urlpatterns = [
    path('os/', views.OrderListCreateView.as_view(), name='os_list'),
    path('os/<int:pk>/', views.OrderDetailView.as_view(), name='os_detail'),
    path('os/<int:pk>/excluir/', views.OrderDeleteView.as_view(), name='os_delete'),
    path('os/<int:pk>/status/', views.OrderStatusView.as_view(), name='os_status'),
    path('os/<int:pk>/fluxo/', views.OrderTransitionView.as_view(), name='os_transition'),
    path('os/<int:pk>/observacoes/', views.OrderObservationView.as_view(), name='os_observation'),
    path('os/<int:pk>/chamados/', views.OrderCallView.as_view(), name='os_call'),
    path('os/<int:pk>/faturar/', views.OrderImmediateInvoiceView.as_view(), name='os_invoice'),
    path('os/<int:pk>/tarefas/', views.OrderTaskCreateView.as_view(), name='os_tasks'),
    path('chamados/', views.CallListView.as_view(), name='call_list'),
    path('chamados/<int:pk>/resolver/', views.CallResolveView.as_view(), name='call_resolve'),
    path('tarefas/minhas/', views.MyTasksView.as_view(), name='my_tasks'),
    path('tarefas/<int:pk>/', views.TaskUpdateView.as_view(), name='task_update'),
    path('tarefas/<int:pk>/excluir/', views.TaskDeleteView.as_view(), name='task_delete'),
    path('tarefas/<int:pk>/status/', views.TaskStatusView.as_view(), name='task_status'),
    path('tarefas/<int:pk>/cronometro/', views.TimerStateView.as_view(), name='timer_state'),
    path('tarefas/<int:pk>/cronometro/iniciar/', views.TimerStartView.as_view(), name='timer_start'),
    path('tarefas/<int:pk>/materiais/', views.TaskProductUsageView.as_view(), name='task_usage'),
    path('cronometro/<int:pk>/parar/', views.TimerStopView.as_view(), name='timer_stop'),
    path('cronometro/<int:pk>/horas/', views.TimeLogCorrectView.as_view(), name='time_log_correct'),
    path('faturas/', views.InvoiceListCreateView.as_view(), name='invoice_list'),
    path('faturas/previa/', views.invoice_preview, name='invoice_preview'),
    path('faturas/<int:pk>/', views.InvoiceDetailView.as_view(), name='invoice_detail'),
    path('faturas/<int:pk>/compartilhar/', views.InvoiceShareView.as_view(), name='invoice_share'),
    path('orcamentos/', views.BudgetListCreateView.as_view(), name='budget_list'),
    path('orcamentos/<int:pk>/', views.BudgetDetailView.as_view(), name='budget_detail'),
    path('orcamentos/<int:pk>/itens/', views.BudgetItemsView.as_view(), name='budget_items'),
    path('orcamentos/<int:pk>/status/', views.BudgetStatusView.as_view(), name='budget_status'),
    path('orcamentos/<int:pk>/compartilhar/', views.BudgetShareView.as_view(), name='budget_share'),
    path('publico/<str:kind>/<str:token>/', views.PublicDocumentView.as_view(), name='public_document'),
]
