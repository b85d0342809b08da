import jwt
import logging
from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from .auth_backends import StaffUser

logger = logging.getLogger(__name__)


class JWTAuthenticationMiddleware(MiddlewareMixin):
    """
    Validate staff JWT tokens on API requests and set request attributes.
    """

    # Paths that never require a token
    PUBLIC_PATHS = [
        '/api/docs/',
        '/api/redoc/',
        '/api/schema/',
        '/admin',   # Django admin uses its own session login
        '/static/',
        '/api/payments/webhooks/',  # Authenticated by gateway signature
    ]

    # Payload fields every staff token must carry
    REQUIRED_FIELDS = ['user_id', 'email', 'is_super_admin', 'permissions', 'enabled_modules']

    def process_request(self, request):
        """Process incoming request and validate JWT token"""
        if request.path == '/' or any(request.path.startswith(path) for path in self.PUBLIC_PATHS):
            return None

        if not request.path.startswith('/api/'):
            return None

        auth_header = request.META.get('HTTP_AUTHORIZATION')
        if not auth_header:
            logger.warning(f"Missing Authorization header - Path: {request.path}, Method: {request.method}")
            return self._error('Authorization header required', 401)

        try:
            scheme, token = auth_header.split(' ', 1)
        except ValueError:
            logger.warning(f"Malformed Authorization header - Path: {request.path}")
            return self._error('Invalid authorization header format', 401)

        if scheme.lower() != 'bearer':
            logger.warning(f"Invalid auth scheme '{scheme}' - Path: {request.path}")
            return self._error('Invalid authorization scheme. Use Bearer token', 401)

        secret_key = getattr(settings, 'JWT_SECRET_KEY', None)
        algorithm = getattr(settings, 'JWT_ALGORITHM', 'HS256')
        leeway = getattr(settings, 'JWT_LEEWAY', 30)

        if not secret_key:
            logger.error("JWT_SECRET_KEY not configured")
            return self._error('Authentication is not configured', 500)

        try:
            payload = jwt.decode(
                token,
                secret_key,
                algorithms=[algorithm],
                leeway=leeway  # Tolerate clock skew between servers
            )
        except jwt.ExpiredSignatureError:
            logger.warning(f"Expired JWT token - Path: {request.path}")
            return self._error('Token has expired', 401)
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid JWT token: {e} - Path: {request.path}")
            return self._error('Invalid token', 401)

        for field in self.REQUIRED_FIELDS:
            if field not in payload:
                logger.warning(
                    f"Missing JWT field '{field}' - Path: {request.path}, "
                    f"Available fields: {list(payload.keys())}"
                )
                return self._error(f'Missing required field in token: {field}', 401)

        module_name = getattr(settings, 'JWT_MODULE_NAME', 'dental')
        if module_name not in payload.get('enabled_modules', []):
            logger.warning(
                f"Module '{module_name}' not enabled - Path: {request.path}, "
                f"User: {payload.get('email')}"
            )
            return self._error('Clinic module not enabled for this user', 403)

        request.user_id = str(payload['user_id'])
        request.email = payload['email']
        request.is_super_admin = payload['is_super_admin']
        request.permissions = payload['permissions']

        request.user = StaffUser(payload)
        request._cached_user = request.user

        logger.debug(f"JWT auth successful - Path: {request.path}, User: {request.email}")
        return None

    @staticmethod
    def _error(message, status):
        return JsonResponse({'success': False, 'error': message, 'kind': 'not_authenticated'}, status=status)
