from common.admin_site import ClinicModelAdmin, clinic_admin_site
from .models import SequenceCounter


class SequenceCounterAdmin(ClinicModelAdmin):
    """Read-only view of the numbering counters."""
    list_display = ['scope', 'value', 'updated_at']
    search_fields = ['scope']
    readonly_fields = ['scope', 'value']

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


clinic_admin_site.register(SequenceCounter, SequenceCounterAdmin)
