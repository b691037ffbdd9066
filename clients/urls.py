from django.urls import path
from . import views

urlpatterns = [
    path('profile/', views.profile, name='client_profile'),
    path('preferences/', views.update_preferences, name='client_preferences'),
    path('bookings/', views.bookings, name='client_bookings'),
    path('bookings/<int:booking_id>/', views.booking_detail, name='client_booking_detail'),
    path('invoices/', views.invoices, name='client_invoices'),
    path('invoices/<int:invoice_id>/', views.invoice_detail, name='client_invoice_detail'),
    path('statistics/', views.statistics, name='client_statistics'),
]
