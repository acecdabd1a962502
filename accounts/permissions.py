"""
Role-based DRF permission classes.
"""
from rest_framework import permissions


class IsFarmer(permissions.BasePermission):
    """
    Permission class to check if user is a farmer.
    """
    message = "Only farmers can perform this action"

    def has_permission(self, request, view):
        return (
            request.user and
            request.user.is_authenticated and
            request.user.role == 'FARMER'
        )


class IsVeterinarian(permissions.BasePermission):
    """
    Permission class to check if user is a veterinarian.
    """
    message = "Only veterinarians can perform this action"

    def has_permission(self, request, view):
        return (
            request.user and
            request.user.is_authenticated and
            request.user.role == 'VETERINARIAN'
        )


class IsRegulator(permissions.BasePermission):
    """
    Permission class to check if user is a regulator.
    """
    message = "Only regulators can perform this action"

    def has_permission(self, request, view):
        return (
            request.user and
            request.user.is_authenticated and
            request.user.role == 'REGULATOR'
        )
