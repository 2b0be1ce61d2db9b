from django.urls import path

from .views import (
    admin_list,
    admin_permissions,
    dashboard,
    role_redirect,
)

urlpatterns = [
    path('dashboard/', role_redirect, name='role_redirect'),
    path('dashboard/home/', dashboard, name='dashboard'),
    path('dashboard/admins/', admin_list, name='admin_list'),
    path('dashboard/admins/<int:user_id>/permissions/', admin_permissions, name='admin_permissions'),
]
