"""
URL configuration for core project.

/v1/*        broker API (search, payments, keys, reviews)
/webhooks/*  processor callbacks
/auth/*      JWT identity endpoints
"""
from django.contrib import admin
from django.urls import path, include

from billing.views import paypal_webhook


urlpatterns = [
    path("admin/", admin.site.urls),

    # Identity (JWT)
    path("", include("accounts.urls")),

    # Broker
    path("v1/", include("search.urls")),
    path("v1/", include("billing.urls")),
    path("v1/", include("reviews.urls")),

    # PayPal calls this
    path("webhooks/paypal", paypal_webhook, name="paypal_webhook"),
]
