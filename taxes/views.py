import logging

from django.db import transaction
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import LegalDocument
from .permissions import HasHelloWorksCallbackSecret
from .serializers import HelloWorksCallbackSerializer, LegalDocumentSerializer

logger = logging.getLogger(__name__)

HELLOWORKS_COMPLETED_STATUS = "completed"


class HelloWorksCallbackView(APIView):
    """
    Receives workflow status updates from HelloWorks. A completed workflow
    marks the tax form as RECEIVED; other statuses are only recorded.
    """

    authentication_classes = []
    permission_classes = [HasHelloWorksCallbackSecret]

    def post(self, request):
        serializer = HelloWorksCallbackSerializer(data=request.data)
        if not serializer.is_valid():
            logger.warning("Tax form: invalid HelloWorks callback: %s", serializer.errors)
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        payload = serializer.validated_data
        metadata = payload["metadata"]
        with transaction.atomic():
            document = (
                LegalDocument.objects.select_for_update()
                .filter(
                    account_id=metadata["accountId"],
                    year=metadata["year"],
                    document_type=LegalDocument.DocumentType.US_TAX_FORM,
                )
                .first()
            )
            if document is None:
                logger.warning(
                    "Tax form: HelloWorks callback for instance %s matches no document (account #%s, %s)",
                    payload["id"],
                    metadata["accountId"],
                    metadata["year"],
                )
                return Response({"detail": "Unknown document."}, status=status.HTTP_404_NOT_FOUND)

            if payload["status"] == HELLOWORKS_COMPLETED_STATUS:
                document.request_status = LegalDocument.RequestStatus.RECEIVED
                document.save(update_fields=["request_status", "updated_at"])
            document.merge_data({"helloWorks": {"callback": request.data}})

        logger.info(
            "Tax form: HelloWorks instance %s is %s (document #%s now %s)",
            payload["id"],
            payload["status"],
            document.id,
            document.request_status,
        )
        return Response(LegalDocumentSerializer(document).data)
