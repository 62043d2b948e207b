from django.urls import path
from .views import (
    ProfessionalDetailView,
    ProfessionalLocationView,
    ProfessionalAvailabilityView,
    ProfessionalPenaltiesView,
    ServiceAreaCheckView,
    PopularServiceAreasView,
)

app_name = "professionals"

urlpatterns = [
    path("service-areas/", PopularServiceAreasView.as_view(), name="service-areas"),
    path("<int:professional_id>/", ProfessionalDetailView.as_view(), name="professional-detail"),
    path("<int:professional_id>/location/", ProfessionalLocationView.as_view(), name="professional-location"),
    path("<int:professional_id>/availability/", ProfessionalAvailabilityView.as_view(), name="professional-availability"),
    path("<int:professional_id>/penalties/", ProfessionalPenaltiesView.as_view(), name="professional-penalties"),
    path("<int:professional_id>/service-area/", ServiceAreaCheckView.as_view(), name="professional-service-area"),
]
