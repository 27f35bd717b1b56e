# core/urls.py
from django.urls import include, path

urlpatterns = [
    path('api/', include('discovery.urls')),
]
