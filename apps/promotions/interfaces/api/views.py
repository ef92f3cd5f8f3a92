from __future__ import annotations

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from apps.promotions.application.use_cases.validate_promo_code import (
    ValidatePromoCodeCommand,
    ValidatePromoCodeUseCase,
)
from apps.promotions.domain.errors import PromoCodeRejectedError
from storefront.api_responses import error, invalid_input, success

from .serializers import PromoCodeValidateSerializer


class PromoCodeValidateAPI(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = PromoCodeValidateSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        data = serializer.validated_data
        try:
            result = ValidatePromoCodeUseCase.execute(
                ValidatePromoCodeCommand(
                    code=data["code"],
                    customer_id=request.user.id,
                    order_value=data["order_value"],
                    product_ids=tuple(data.get("product_ids") or ()),
                )
            )
        except PromoCodeRejectedError as exc:
            http_status = (
                status.HTTP_404_NOT_FOUND
                if exc.reason == PromoCodeRejectedError.REASON_NOT_FOUND
                else status.HTTP_400_BAD_REQUEST
            )
            return error(message=str(exc), field=exc.field, code=exc.reason, http_status=http_status)

        return success(
            data={
                "valid": result.valid,
                "code": result.promo_code.code,
                "discount_type": result.promo_code.discount_type,
                "discount_amount": str(result.discount_amount),
            }
        )
