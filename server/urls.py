"""Root URL configuration."""

from django.urls import include, path

from server.apps.files import views

urlpatterns = [
    path('health', views.health, name='health'),
    path('', include('server.apps.files.urls')),
]
