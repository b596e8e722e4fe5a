from django.apps import AppConfig


class OperatorCoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "operator_core"
