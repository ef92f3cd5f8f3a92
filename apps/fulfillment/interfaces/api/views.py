from __future__ import annotations

from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.views import APIView

from apps.fulfillment.application.use_cases.attach_order_files import (
    AttachOrderFilesCommand,
    AttachOrderFilesUseCase,
    UploadedFile,
)
from apps.fulfillment.application.use_cases.delete_design_file import (
    DeleteDesignFileCommand,
    DeleteDesignFileUseCase,
)
from apps.fulfillment.application.use_cases.list_order_files import (
    ListOrderFilesCommand,
    ListOrderFilesUseCase,
)
from apps.fulfillment.application.use_cases.mark_order_complete import (
    MarkOrderCompleteCommand,
    MarkOrderCompleteUseCase,
)
from apps.fulfillment.application.use_cases.record_download import (
    RecordDownloadCommand,
    RecordDownloadUseCase,
)
from apps.fulfillment.domain.errors import (
    DesignFileNotFoundError,
    DownloadNotAllowedError,
    FulfillmentPreconditionError,
)
from apps.orders.domain.errors import OrderNotFoundError
from storefront.api_responses import error, invalid_input, success

from .serializers import AttachOrderFilesSerializer, MarkOrderCompleteSerializer


def _actor(request) -> str:
    return request.user.get_username() or f"user:{request.user.id}"


class AdminOrderCompleteAPI(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, order_id: int):
        serializer = MarkOrderCompleteSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        try:
            order = MarkOrderCompleteUseCase.execute(
                MarkOrderCompleteCommand(
                    order_id=order_id,
                    changed_by=_actor(request),
                    note=serializer.validated_data["note"],
                )
            )
        except OrderNotFoundError as exc:
            return error(message=str(exc), code="not_found", http_status=status.HTTP_404_NOT_FOUND)
        except FulfillmentPreconditionError as exc:
            return error(message=str(exc), field=exc.field, code="precondition_failed")

        return success(
            data={
                "order_id": order.id,
                "order_number": order.order_number,
                "order_status": order.order_status,
                "customization_status": order.customization_status,
                "download_expiry": order.download_expiry.isoformat() if order.download_expiry else None,
            }
        )


class AdminOrderFilesAPI(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request, order_id: int):
        try:
            files = ListOrderFilesUseCase.execute(ListOrderFilesCommand(order_id=order_id))
        except OrderNotFoundError as exc:
            return error(message=str(exc), code="not_found", http_status=status.HTTP_404_NOT_FOUND)
        return success(data={"order_id": order_id, "files": files})

    def post(self, request, order_id: int):
        serializer = AttachOrderFilesSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        data = serializer.validated_data
        try:
            result = AttachOrderFilesUseCase.execute(
                AttachOrderFilesCommand(
                    order_id=order_id,
                    product_id=data["product_id"],
                    files=tuple(UploadedFile(**item) for item in data["files"]),
                    changed_by=_actor(request),
                    created_by_id=request.user.id,
                    color_name=data["color_name"],
                    color_hex=data["color_hex"],
                )
            )
        except OrderNotFoundError as exc:
            return error(message=str(exc), code="not_found", http_status=status.HTTP_404_NOT_FOUND)
        except FulfillmentPreconditionError as exc:
            return error(message=str(exc), field=exc.field, code="precondition_failed")

        return success(
            data={
                "order_id": result.order.id,
                "customization_status": result.order.customization_status,
                "design_file_ids": [design_file.id for design_file in result.files],
                "grants_created": result.grants_created,
            },
            http_status=status.HTTP_201_CREATED,
        )


class AdminDesignFileDeleteAPI(APIView):
    permission_classes = [IsAdminUser]

    def delete(self, request, design_file_id: int):
        try:
            grants_deleted = DeleteDesignFileUseCase.execute(
                DeleteDesignFileCommand(design_file_id=design_file_id, changed_by=_actor(request))
            )
        except DesignFileNotFoundError as exc:
            return error(message=str(exc), code="not_found", http_status=status.HTTP_404_NOT_FOUND)
        return success(data={"design_file_id": design_file_id, "grants_deleted": grants_deleted})


class OrderFileDownloadAPI(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, order_id: int, design_file_id: int):
        try:
            ticket = RecordDownloadUseCase.execute(
                RecordDownloadCommand(
                    order_id=order_id,
                    design_file_id=design_file_id,
                    customer_id=request.user.id,
                )
            )
        except (OrderNotFoundError, DesignFileNotFoundError) as exc:
            return error(message=str(exc), code="not_found", http_status=status.HTTP_404_NOT_FOUND)
        except DownloadNotAllowedError as exc:
            return error(message=str(exc), code=exc.reason, http_status=status.HTTP_403_FORBIDDEN)

        return success(
            data={
                "file_name": ticket.file_name,
                "file_url": ticket.file_url,
                "mime_type": ticket.mime_type,
                "download_count": ticket.download_count,
            }
        )
