"""
URL configuration for the Django application.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/token/            - Obtain JWT pair (simplejwt)
    /api/v1/auth/token/refresh/    - Refresh access token
    /api/v1/billing/               - Billing endpoints
        vnpay/return/              - VNPay return URL (GET)
        vnpay/ipn/                 - VNPay IPN (GET, POST)
        appointments/{id}/invoice/ - Generate invoice
        invoices/                  - List invoices
        invoices/number/{number}/  - Invoice by number
        invoices/{id}/             - Invoice detail/update
        invoices/{id}/payments/cash/   - Cash payment
        invoices/{id}/payments/online/ - Start online payment
        payments/                  - Payment history
        payments/{id}/refund/      - Refund (admin)
        payments/{id}/verify/      - Gateway verification (admin)
        payments/{id}/receipt/     - Receipt

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Authentication (simplejwt)
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # Billing
    path("billing/", include("billing.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Clinic Billing Admin"
admin.site.site_title = "Clinic Billing"
admin.site.index_title = "Billing administration"
