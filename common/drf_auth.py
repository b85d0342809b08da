"""
Django REST Framework authentication and permission classes for staff JWT auth.

The JWT middleware validates the token and sets `request.user`; the classes
here expose that user to DRF and check module permissions carried in the
token payload.
"""

from rest_framework import authentication, permissions
from django.conf import settings
from django.contrib.auth.models import AnonymousUser
import logging

from .auth_backends import StaffUser

logger = logging.getLogger(__name__)


class JWTAuthentication(authentication.BaseAuthentication):
    """
    DRF authentication class returning the StaffUser set by JWTAuthenticationMiddleware.
    """

    def authenticate(self, request):
        # Read the underlying Django request to avoid recursing into request.user
        django_request = request._request if hasattr(request, '_request') else request
        user = getattr(django_request, 'user', None)

        if isinstance(user, StaffUser):
            return (user, None)
        return None

    def authenticate_header(self, request):
        return 'Bearer realm="api"'


class ClinicPermission(permissions.BasePermission):
    """
    Check module permissions from the JWT payload.

    Permissions are nested per module:
    {
        "permissions": {
            "dental": {
                "appointments": {"view": true, "create": true, "edit": true, ...},
                "billing": {...},
                ...
            }
        }
    }

    Views declare `clinic_module` and optionally `action_permission_map`
    to translate DRF actions (including custom @action names) into
    permission names.
    """

    action_permission_map = {
        'list': 'view',
        'retrieve': 'view',
        'create': 'create',
        'update': 'edit',
        'partial_update': 'edit',
        'destroy': 'delete',
    }

    method_action_map = {
        'get': 'list',
        'post': 'create',
        'put': 'update',
        'patch': 'partial_update',
        'delete': 'destroy',
    }

    def has_permission(self, request, view):
        if not request.user or isinstance(request.user, AnonymousUser):
            return False

        if getattr(request.user, 'is_super_admin', False):
            return True

        module = getattr(view, 'clinic_module', None)
        if not module:
            logger.warning(f"No clinic module defined for view {view.__class__.__name__}")
            return False

        action = getattr(view, 'action', None) or self.method_action_map.get(request.method.lower())
        permission_name = self.get_permission_name(action, view)
        if not permission_name:
            logger.warning(f"No permission mapping for action '{action}' on {view.__class__.__name__}")
            return False

        return bool(self.get_permission_value(request, module, permission_name))

    def get_permission_name(self, action, view):
        view_map = getattr(view, 'action_permission_map', None)
        if view_map and action in view_map:
            return view_map[action]
        return self.action_permission_map.get(action)

    def get_permission_value(self, request, module, permission_name):
        user_permissions = getattr(request.user, 'permissions', None) or {}
        module_name = getattr(settings, 'JWT_MODULE_NAME', 'dental')
        return user_permissions.get(module_name, {}).get(module, {}).get(permission_name)


class IsAuthenticated(permissions.BasePermission):
    """
    Only checks that the request carries an authenticated staff user.
    """

    def has_permission(self, request, view):
        if not request.user or isinstance(request.user, AnonymousUser):
            return False
        return bool(getattr(request.user, 'is_authenticated', False))
