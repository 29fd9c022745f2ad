from django.urls import path
from .views import next_task_view
from .views import predict_view
from .views import prioritize_view
from .views import resolve_conflict_view

urlpatterns=[
    # POST: ordered task list with decision provenance
    path('prioritize/',prioritize_view,name="tasks-prioritize"),

    # POST: next workable task for the crew
    path('next/',next_task_view,name="tasks-next"),

    path('predict/',predict_view,name="tasks-predict"),

    # POST: merge concurrent offline edits
    path('resolve-conflict/',resolve_conflict_view,name="tasks-resolve-conflict")

]
