"""Custom Django admin app configuration."""

from django.contrib.admin.apps import AdminConfig


class AggregatorAdminConfig(AdminConfig):
    default_site = "config.admin.AggregatorAdminSite"
