from rest_framework import status
from rest_framework.response import Response

from billing.auth import request_principal
from core.views import BrokerAPIView

from . import services
from .models import Review
from .serializers import ReviewPayload, ReviewSummary


class PublicReviewsView(BrokerAPIView):
    """Newest reviews for the landing page. No credentials needed."""

    def get(self, request):
        rows = services.latest_reviews()
        return Response({"success": True, "reviews": ReviewSummary(rows, many=True).data})


class MyReviewsView(BrokerAPIView):
    """
    GET  -> the caller's reviews, newest first
    POST {"content": "...", "rating": 1-5}
    201  -> {"success": true, "review": {...}}
    """

    def get(self, request):
        user = request_principal(request)
        rows = Review.objects.filter(owner=user).select_related("owner")
        return Response({
            "success": True,
            "canReview": services.can_review(user),
            "reviews": ReviewSummary(rows, many=True).data,
        })

    def post(self, request):
        user = request_principal(request)
        s = ReviewPayload(data=request.data)
        s.is_valid(raise_exception=True)
        review = services.submit_review(user, s.validated_data["content"], s.validated_data["rating"])
        return Response({"success": True, "review": ReviewSummary(review).data}, status=status.HTTP_201_CREATED)


class ReviewDetailView(BrokerAPIView):
    def delete(self, request, pk):
        user = request_principal(request)
        services.delete_review(user, pk)
        return Response({"success": True})
