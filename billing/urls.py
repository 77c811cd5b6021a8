from django.urls import path
from .views import CreateOrderView, CaptureOrderView, ManualTransferView, MyKeyView

urlpatterns = [
    path("payments/paypal/orders", CreateOrderView.as_view(), name="paypal_create_order"),
    path("payments/paypal/capture", CaptureOrderView.as_view(), name="paypal_capture_order"),
    path("payments/manual", ManualTransferView.as_view(), name="manual_transfer"),
    path("keys/mine", MyKeyView.as_view(), name="my_key"),
]
