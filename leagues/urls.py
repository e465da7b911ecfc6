from django.urls import path

from . import views

app_name = "leagues"

urlpatterns = [
    path("", views.leagues, name="leagues"),
    path("join", views.join, name="join"),
    path("<int:league_id>", views.league_detail, name="detail"),
    path("<int:league_id>/leave", views.leave, name="leave"),
]
