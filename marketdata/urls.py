from django.urls import path

from . import views

app_name = "marketdata"

urlpatterns = [
    path("quote/<str:symbol>", views.quote, name="quote"),
    path("search", views.search, name="search"),
]
