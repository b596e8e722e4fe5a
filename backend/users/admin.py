from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = (
        "username",
        "email",
        "phone",
        "can_rent",
        "can_list",
        "points_balance",
        "is_staff",
        "is_active",
    )
    fieldsets = BaseUserAdmin.fieldsets + (
        ("Capabilities", {"fields": ("can_rent", "can_list")}),
        (
            "Marketplace",
            {
                "fields": (
                    "phone",
                    "email_verified",
                    "stripe_customer_id",
                    "points_balance",
                )
            },
        ),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Capabilities", {"fields": ("can_rent", "can_list")}),
    )
