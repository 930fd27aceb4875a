from django.urls import path

from . import views

urlpatterns = [
    path("generate-tasks/", views.GenerateTasks.as_view(), name="generate-tasks"),
    path("goals/", views.GoalList.as_view(), name="goal-list"),
    path("goals/<uuid:goal_id>/", views.GoalDetail.as_view(), name="goal-detail"),
    path("tasks/<uuid:task_id>/status/", views.TaskStatusUpdate.as_view(), name="task-status"),
]
