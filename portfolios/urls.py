from django.urls import path

from leaderboards import views as leaderboard_views

from . import views

app_name = "portfolios"

urlpatterns = [
    path("league/<int:league_id>", views.portfolio_for_league, name="portfolio"),
    path("league/<int:league_id>/transactions", views.transactions, name="transactions"),
    path("league/<int:league_id>/leaderboard", leaderboard_views.leaderboard, name="leaderboard"),
    path("buy", views.buy, name="buy"),
    path("sell", views.sell, name="sell"),
]
