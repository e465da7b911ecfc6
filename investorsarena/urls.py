from django.contrib import admin
from django.http import JsonResponse
from django.urls import include, path
from django.utils import timezone

from .api import json_api


@json_api(auth=False)
def health(request):
    return JsonResponse({"ok": True, "status": "OK", "timestamp": timezone.now()})


urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/health", health, name="health"),
    path("api/auth/", include("accounts.urls")),
    path("api/leagues/", include("leagues.urls")),
    path("api/portfolio/", include("portfolios.urls")),
    path("api/stocks/", include("marketdata.urls")),
]
