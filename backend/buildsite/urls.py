from django.urls import include, path

urlpatterns = [
    path('api/v1/tasks/', include('tasks.urls')),
]
