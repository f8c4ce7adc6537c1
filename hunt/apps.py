from django.apps import AppConfig


class HuntConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'hunt'
    verbose_name = 'Chasse au trésor'
