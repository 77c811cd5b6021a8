from django.urls import path
from .views import MyReviewsView, PublicReviewsView, ReviewDetailView

urlpatterns = [
    path("reviews", PublicReviewsView.as_view(), name="reviews"),
    path("reviews/mine", MyReviewsView.as_view(), name="my_reviews"),
    path("reviews/<int:pk>", ReviewDetailView.as_view(), name="review_detail"),
]
