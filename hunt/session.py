from django.conf import settings

DEFAULT_COOKIE_NAME = "user_id"
DEFAULT_COOKIE_MAX_AGE = 60 * 60 * 24 * 7  # 1 semaine


def cookie_name() -> str:
    return getattr(settings, "HUNT_COOKIE_NAME", DEFAULT_COOKIE_NAME)


def has_session(request) -> bool:
    return cookie_name() in request.COOKIES


def get_participant_id(request):
    """Identifiant brut porté par le cookie, None si absent."""
    return request.COOKIES.get(cookie_name())


def set_participant(response, participant):
    response.set_cookie(
        cookie_name(),
        str(participant.pk),
        max_age=getattr(settings, "HUNT_COOKIE_MAX_AGE", DEFAULT_COOKIE_MAX_AGE),
        httponly=True,
        path="/",
    )
    return response


def clear_participant(response):
    response.delete_cookie(cookie_name(), path="/")
    return response
