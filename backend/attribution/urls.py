from django.urls import path
from . import views

app_name = 'attribution'

urlpatterns = [
    # Booking side
    path('start/', views.start_attribution, name='start-attribution'),
    path('<int:attribution_id>/', views.get_attribution, name='attribution-detail'),
    path('professional/<int:professional_id>/history/', views.professional_history, name='professional-history'),

    # Professional actions (signed offer links)
    path('<int:attribution_id>/accept/', views.accept_attribution, name='accept-attribution'),
    path('<int:attribution_id>/refuse/', views.refuse_attribution, name='refuse-attribution'),
    path('<int:attribution_id>/cancel/', views.cancel_attribution, name='cancel-attribution'),
]
