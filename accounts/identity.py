"""
Caller identity.

The authentication layer resolves the request user into a ``Caller`` exactly
once per request. Workflow services receive the caller explicitly and branch
on its ``role`` discriminant rather than inspecting the user object's shape.
"""

from .models import User


class Caller:
    """An authenticated actor with an explicit role."""

    FARMER = User.UserRole.FARMER
    VETERINARIAN = User.UserRole.VETERINARIAN
    REGULATOR = User.UserRole.REGULATOR

    __slots__ = ('user', 'role')

    def __init__(self, user, role):
        if role not in User.UserRole.values:
            raise ValueError(f"Unknown caller role: {role}")
        self.user = user
        self.role = role

    def __repr__(self):
        return f"Caller(user={self.user.pk}, role={self.role})"

    @classmethod
    def from_user(cls, user):
        return cls(user=user, role=user.role)

    @property
    def id(self):
        return self.user.pk

    @property
    def is_farmer(self):
        return self.role == self.FARMER

    @property
    def is_veterinarian(self):
        return self.role == self.VETERINARIAN

    @property
    def is_regulator(self):
        return self.role == self.REGULATOR


class CallerMixin:
    """
    APIView mixin that resolves ``self.caller`` after authentication.

    ``initial()`` runs authentication and permission checks first, so the
    caller is only built for authenticated requests.
    """

    caller = None

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        if request.user and request.user.is_authenticated:
            self.caller = Caller.from_user(request.user)
