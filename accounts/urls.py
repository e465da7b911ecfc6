from django.urls import path

from . import views

app_name = "accounts"

urlpatterns = [
    path("register", views.register, name="register"),
    path("verify-email", views.verify, name="verify_email"),
    path("login", views.login_view, name="login"),
    path("me", views.me, name="me"),
]
