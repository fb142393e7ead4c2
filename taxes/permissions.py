import hmac

from django.conf import settings
from rest_framework.permissions import BasePermission


CALLBACK_SECRET_HEADER = "HTTP_X_HELLOWORKS_SECRET"


class HasHelloWorksCallbackSecret(BasePermission):
    """
    Checks the shared secret sent by HelloWorks with each callback.
    Open when HELLOWORKS_CALLBACK_SECRET is not configured.
    """

    message = "Invalid HelloWorks callback secret."

    def has_permission(self, request, view) -> bool:
        expected = getattr(settings, "HELLOWORKS_CALLBACK_SECRET", "")
        if not expected:
            return True
        provided = request.META.get(CALLBACK_SECRET_HEADER, "")
        return hmac.compare_digest(provided.encode(), expected.encode())
