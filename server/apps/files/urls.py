"""URL routes of the files API."""

from django.urls import path

from server.apps.files import views

app_name = 'files'

urlpatterns = [
    path('upload', views.upload, name='upload'),
    path('files', views.file_list, name='list'),
    path('files/<uuid:file_id>', views.file_detail, name='detail'),
    path('files/<uuid:file_id>/download', views.download, name='download'),
    path('files/<uuid:file_id>/thumbnail', views.thumbnail, name='thumbnail'),
]
