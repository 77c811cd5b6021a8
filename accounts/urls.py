from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from .views import register, me


urlpatterns = [
    path("auth/register", register, name="register"),
    path("auth/login", TokenObtainPairView.as_view(), name="token_obtain"),
    path("auth/refresh", TokenRefreshView.as_view(), name="token_refresh"),
    path("users/me", me, name="me"),
]
