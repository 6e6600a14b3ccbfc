from django.apps import AppConfig


class MlsDataConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "mls_data"
    verbose_name = "MLS Data"
