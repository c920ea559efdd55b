"""
URL configuration for the exam assessment backend.

- /admin/: Django admin
- /api/assessments/: exam engine REST API (see assessments/urls.py)
"""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/assessments/", include("assessments.urls")),
]
