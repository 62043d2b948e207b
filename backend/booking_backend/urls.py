from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check), # Health check endpoint

    # Professional directory APIs (service areas, penalties, location)
    path('api/professionals/', include('professionals.urls')),

    # Attribution endpoints (start, accept, refuse, cancel, status)
    path('api/attribution/', include('attribution.urls')),
]
