from django.apps import AppConfig


class ContractsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'contracts'

    def ready(self):
        """
        Connect the lifecycle signal receivers that dispatch notifications
        """
        import contracts.receivers  # noqa
