from django.urls import path
from . import views

urlpatterns = [
    path('', views.bookings, name='bookings'),
    path('dashboard/', views.dashboard, name='booking_dashboard'),
    path('<int:booking_id>/', views.get_booking, name='get_booking'),
    path('<int:booking_id>/status/', views.update_booking_status, name='update_booking_status'),
    path('<int:booking_id>/preferences/', views.update_preferences, name='update_booking_preferences'),
    path('<int:booking_id>/payment-reminder/', views.send_payment_reminder, name='send_payment_reminder'),
]
