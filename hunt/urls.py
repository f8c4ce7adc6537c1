from django.urls import path
from . import views

app_name = 'hunt'

urlpatterns = [
    path('', views.index, name='index'),
    path('hunt/', views.hunt, name='hunt'),
    path('clue/<int:number>/', views.clue, name='clue'),
    path('components/', views.components, name='components'),
    path('completion/', views.completion, name='completion'),
    path('leaderboard/', views.leaderboard, name='leaderboard'),
    path('checkpoints/pdf/', views.checkpoints_pdf, name='checkpoints_pdf'),
    path('api/register', views.api_register, name='api_register'),
    path('api/scan', views.api_scan, name='api_scan'),
    path('api/progress', views.api_progress, name='api_progress'),
]
