from django.apps import AppConfig


class CommonConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'common'
    verbose_name = 'Common Clinic Components'

    def ready(self):
        """
        Route every @admin.register() through the clinic admin site
        """
        from django.contrib import admin
        from .admin_site import clinic_admin_site

        admin.site = clinic_admin_site
        admin.sites.site = clinic_admin_site
