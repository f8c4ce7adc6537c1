import json

from django.conf import settings
from django.contrib import messages
from django.contrib.auth.decorators import user_passes_test
from django.http import JsonResponse
from django.shortcuts import get_object_or_404, redirect, render
from django.views.decorators.http import require_GET, require_POST

from . import qr_sheet, services, session
from .exceptions import HuntError, NotFoundError
from .models import Checkpoint


def _error(exc):
    return JsonResponse({'error': str(exc)}, status=exc.status_code)


def _registration_required(code=None, clear=False):
    data = {'status': services.REGISTRATION_REQUIRED}
    if code is not None:
        data['code'] = code
    response = JsonResponse(data)
    if clear:
        session.clear_participant(response)
    return response


def _load_status(request):
    """Statut du participant de la session, None si le cookie est inconnu."""
    try:
        return services.participant_status(session.get_participant_id(request))
    except NotFoundError:
        return None


def _back_home():
    return session.clear_participant(redirect('hunt:index'))


@require_POST
def api_register(request):
    """Inscription d'un participant, ou reconnaissance s'il existe déjà."""
    try:
        data = json.loads(request.body or b'{}')
    except (ValueError, UnicodeDecodeError):
        data = {}
    if not isinstance(data, dict):
        data = {}

    try:
        participant, created = services.register_participant(
            data.get('registrationNumber'), data.get('code')
        )
    except HuntError as e:
        return _error(e)

    response = JsonResponse({
        'status': services.SUCCESS,
        'message': services.MSG_REGISTERED if created else services.MSG_ALREADY_REGISTERED,
        'userId': str(participant.pk),
    })
    return session.set_participant(response, participant)


@require_GET
def api_scan(request):
    """Scan d'un QR Code par le participant de la session."""
    code = request.GET.get('code') or ''
    if not code.strip():
        return JsonResponse({'error': 'QR code is required'}, status=400)

    if not session.has_session(request):
        return _registration_required(code)

    try:
        outcome = services.record_scan(session.get_participant_id(request), code)
    except NotFoundError:
        # Cookie présent mais participant introuvable
        return _registration_required(code, clear=True)
    except HuntError as e:
        return _error(e)
    return JsonResponse(outcome.as_dict())


@require_GET
def api_progress(request):
    """Progression actuelle, sans enregistrer de scan."""
    if not session.has_session(request):
        return _registration_required()
    try:
        outcome = services.participant_status(session.get_participant_id(request))
    except NotFoundError:
        return _registration_required(clear=True)
    except HuntError as e:
        return _error(e)
    return JsonResponse(outcome.as_dict())


def index(request):
    """Accueil : formulaire d'inscription."""
    if session.has_session(request):
        return redirect('hunt:hunt')
    return render(request, 'hunt/index.html', {
        'default_code': getattr(settings, 'HUNT_DEFAULT_CODE', 'qr-code-1'),
    })


def hunt(request):
    """Scanner simulé : envoie le code après un délai fixe."""
    code = request.GET.get('code') or getattr(settings, 'HUNT_DEFAULT_CODE', 'qr-code-1')
    checkpoint = Checkpoint.objects.filter(code=code).first()
    return render(request, 'hunt/hunt.html', {
        'code': code,
        'checkpoint': checkpoint,
        'scan_delay_ms': getattr(settings, 'HUNT_SCAN_DELAY_MS', 3000),
    })


def clue(request, number):
    """Indice révélé par un QR Code déjà scanné."""
    status = _load_status(request)
    if status is None:
        return _back_home()

    checkpoint = get_object_or_404(Checkpoint, order=number)
    if not status.participant.has_scanned(checkpoint.code):
        messages.warning(request, "Scan this QR code first to unlock its clue.")
        return redirect('hunt:components')

    return render(request, 'hunt/clue.html', {
        'checkpoint': checkpoint,
        'status': status,
    })


def components(request):
    """Composants collectés, progression et rang."""
    status = _load_status(request)
    if status is None:
        return _back_home()

    unlocked = Checkpoint.objects.filter(code__in=status.components)
    return render(request, 'hunt/components.html', {
        'status': status,
        'total': services.total_components(),
        'unlocked': unlocked,
    })


def completion(request):
    status = _load_status(request)
    if status is None:
        return _back_home()
    if not status.complete:
        return redirect('hunt:components')
    return render(request, 'hunt/completion.html', {'status': status})


def leaderboard(request):
    """Classement des participants."""
    return render(request, 'hunt/leaderboard.html', {
        'ranking': services.leaderboard(limit=100),
        'total': services.total_components(),
    })


@user_passes_test(lambda u: u.is_staff)
def checkpoints_pdf(request):
    """PDF des QR Codes de tous les checkpoints."""
    return qr_sheet.checkpoint_sheet_response(Checkpoint.objects.order_by('order'))
