from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _
from rest_framework.permissions import BasePermission

# ------------------------------------------------------------
# Rollen: geschlossene Aufzählung statt der alten Rollen-Codes.
# Jede Entscheidung unten behandelt alle drei Rollen explizit.
# ------------------------------------------------------------


class Role(models.TextChoices):
    ADMIN = "admin", _("Admin")
    LECTURER = "lecturer", _("Lecturer")
    STUDENT = "student", _("Student")


def resolve_role(user) -> Role:
    """Maps an authenticated Django user onto the engine's role enumeration."""
    if user.is_superuser or user.is_staff:
        return Role.ADMIN
    lecturer_group = getattr(settings, "EXAM_LECTURER_GROUP", "lecturer")
    if user.groups.filter(name=lecturer_group).exists():
        return Role.LECTURER
    return Role.STUDENT


def identity_of(user) -> str:
    """Opaque id under which the engine stores instructors and students."""
    return str(user.pk)


def can_manage_exam(role: Role, user_id: str, exam) -> bool:
    if role == Role.ADMIN:
        return True
    if role == Role.LECTURER:
        return exam.instructor_id == user_id
    if role == Role.STUDENT:
        return False
    raise ValueError(f"Unhandled role: {role}")


def can_grade(role: Role) -> bool:
    if role == Role.ADMIN:
        return True
    if role == Role.LECTURER:
        return True
    if role == Role.STUDENT:
        return False
    raise ValueError(f"Unhandled role: {role}")


def can_view_response(role: Role, user_id: str, response) -> bool:
    if role == Role.ADMIN:
        return True
    if role == Role.LECTURER:
        return response.exam.instructor_id == user_id
    if role == Role.STUDENT:
        return response.student_id == user_id
    raise ValueError(f"Unhandled role: {role}")


def _authenticated(request) -> bool:
    return bool(request.user and request.user.is_authenticated)


class IsLecturerOrAdmin(BasePermission):
    """Erlaubt Zugriff nur Dozenten und Admins (Bewertung, Prüfungserstellung)."""

    def has_permission(self, request, view):
        return _authenticated(request) and can_grade(resolve_role(request.user))


class IsExamOwnerOrAdmin(BasePermission):
    """Änderungen an einer Prüfung nur durch den besitzenden Dozenten oder Admins."""

    def has_permission(self, request, view):
        return _authenticated(request) and can_grade(resolve_role(request.user))

    def has_object_permission(self, request, view, obj):
        return can_manage_exam(resolve_role(request.user), identity_of(request.user), obj)


class IsResponseParticipant(BasePermission):
    """Studierende sehen nur eigene Versuche, Dozenten nur Versuche eigener Prüfungen."""

    def has_permission(self, request, view):
        return _authenticated(request)

    def has_object_permission(self, request, view, obj):
        return can_view_response(resolve_role(request.user), identity_of(request.user), obj)


class IsAttemptOwner(BasePermission):
    """Antworten speichern und abgeben darf nur der Studierende des Versuchs."""

    def has_permission(self, request, view):
        return _authenticated(request)

    def has_object_permission(self, request, view, obj):
        return obj.student_id == identity_of(request.user)
