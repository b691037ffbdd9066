from django.urls import path
from . import views

urlpatterns = [
    path('create-invoice/', views.create_invoice, name='create_invoice'),
    path('send-invoice/<int:invoice_id>/', views.send_invoice, name='send_invoice'),
    path('invoice/<int:invoice_id>/', views.get_invoice_detail, name='get_invoice_detail'),
    path('invoices/', views.list_invoices, name='list_invoices'),
    path('invoices/flag-overdue/', views.flag_overdue_invoices, name='flag_overdue_invoices'),
    path('deposit/<int:booking_id>/', views.create_deposit_payment, name='create_deposit_payment'),
    path('final/<int:booking_id>/', views.create_final_payment, name='create_final_payment'),
    path('status/<str:payment_id>/', views.get_payment_status, name='get_payment_status'),
    path('schedule/', views.payment_schedule, name='payment_schedule'),
    path('webhook/', views.stripe_webhook, name='stripe_webhook'),
]
