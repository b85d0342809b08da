"""
Non-database user built from a validated staff JWT payload.
"""


class StaffUser:
    """
    Lightweight user object set on `request.user` by the JWT middleware.

    Staff accounts live in the external identity service, so nothing here is
    persisted. The object carries just enough for DRF authentication and the
    module permission checks in `common.drf_auth`.
    """

    is_active = True
    is_anonymous = False
    is_authenticated = True

    def __init__(self, payload):
        self.id = str(payload.get('user_id'))
        self.pk = self.id
        self.email = payload.get('email', '')
        self.name = payload.get('name') or self.email
        self.is_super_admin = bool(payload.get('is_super_admin', False))
        self.is_staff = self.is_super_admin
        self.permissions = payload.get('permissions') or {}
        self.enabled_modules = payload.get('enabled_modules') or []
        self.clinic_id = payload.get('clinic_id')

    def __str__(self):
        return self.email or self.id

    def get_username(self):
        return self.email

    def has_module_perms(self, app_label):
        return self.is_super_admin

    def has_perm(self, perm, obj=None):
        return self.is_super_admin
