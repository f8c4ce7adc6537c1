from django.conf import settings
from django.shortcuts import redirect

from . import session

DEFAULT_PROTECTED_PATHS = ("/hunt", "/clue", "/components", "/completion")


class HuntSessionMiddleware:
    """
    Renvoie vers l'accueil les pages de la chasse demandées sans cookie.

    Seule la présence du cookie est vérifiée ; l'API de scan contrôle que
    le participant existe.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        protected = tuple(getattr(settings, "HUNT_PROTECTED_PATHS", DEFAULT_PROTECTED_PATHS))
        if request.path.startswith(protected) and not session.has_session(request):
            return redirect("hunt:index")
        return self.get_response(request)
