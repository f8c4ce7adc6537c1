import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from .exceptions import NotFoundError, PersistenceError, ValidationError
from .models import Checkpoint, Participant, ScanEvent

logger = logging.getLogger(__name__)

SUCCESS = "success"
ALREADY_SCANNED = "already_scanned"
REGISTRATION_REQUIRED = "registration_required"
REGISTERED = "registered"

MSG_ALREADY_REGISTERED = "User already registered"
MSG_REGISTERED = "Registration successful"
MSG_ALREADY_SCANNED = "You've already scanned this QR code"
MSG_SCANNED = "QR code scanned successfully"


def total_components() -> int:
    return getattr(settings, "HUNT_TOTAL_COMPONENTS", 5)


def _required(value) -> str:
    """Valeur brute, ou "" si absente ou blanche."""
    if value is None:
        return ""
    value = str(value)
    return value if value.strip() else ""


def _parse_participant_id(raw) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise NotFoundError(f"Unknown participant id {raw!r}") from None


@dataclass
class ScanOutcome:
    """Résultat d'une opération sur la progression d'un participant."""
    status: str
    participant: Participant
    scan_count: int = 0
    rank: Optional[int] = None

    @property
    def progress(self) -> int:
        return self.participant.progress

    @property
    def components(self) -> List[str]:
        return list(self.participant.scanned_codes or [])

    @property
    def complete(self) -> bool:
        return self.progress >= total_components()

    def as_dict(self) -> Dict:
        if self.status == ALREADY_SCANNED:
            return {
                "status": self.status,
                "message": MSG_ALREADY_SCANNED,
                "progress": self.progress,
                "components": self.components,
            }
        data = {
            "status": self.status,
            "progress": self.progress,
            "components": self.components,
            "rank": self.rank,
            "complete": self.complete,
        }
        if self.status == SUCCESS:
            data["message"] = MSG_SCANNED
            data["scanCount"] = self.scan_count
        else:
            data["total"] = total_components()
        return data


def qr_code_number_for(code: str) -> int:
    """Ordre du QR Code dans le parcours, 1 si le code n'est pas catalogué."""
    order = Checkpoint.objects.filter(code=code).values_list("order", flat=True).first()
    return order or 1


def compute_rank(progress: int, last_scan_time, exclude=None) -> int:
    """
    Position au classement : 1 + participants devant.

    Devant = progression strictement supérieure, ou égale avec un dernier
    scan strictement antérieur.
    """
    ahead = Participant.objects.filter(
        Q(progress__gt=progress) | Q(progress=progress, last_scan_time__lt=last_scan_time)
    )
    if exclude is not None:
        ahead = ahead.exclude(pk=exclude)
    return ahead.count() + 1


def leaderboard(limit: Optional[int] = None) -> List[Tuple[int, Participant]]:
    participants = Participant.objects.order_by("-progress", "last_scan_time", "pk")
    if limit:
        participants = participants[:limit]
    return [(position, p) for position, p in enumerate(participants, start=1)]


def register_participant(registration_number, code, now=None) -> Tuple[Participant, bool]:
    """
    Inscrit un participant avec son premier code.

    Une inscription répétée du même numéro renvoie le participant existant
    sans enregistrer de nouveau scan.
    """
    registration_number = _required(registration_number)
    code = _required(code)
    if not registration_number or not code:
        raise ValidationError("Registration number and code are required")

    now = now or timezone.now()
    try:
        with transaction.atomic():
            participant, created = Participant.objects.get_or_create(
                registration_number=registration_number,
                defaults={
                    "scanned_codes": [code],
                    "progress": 1,
                    "last_scan_time": now,
                    "created_at": now,
                },
            )
            if created:
                ScanEvent.objects.create(
                    participant=participant,
                    code=code,
                    scanned_at=now,
                    qr_code_number=qr_code_number_for(code),
                )
    except DatabaseError as exc:
        logger.exception("Registration error for %s", registration_number)
        raise PersistenceError("Failed to register user") from exc

    if created:
        logger.info("Participant %s registered (id=%s)", registration_number, participant.pk)
    else:
        logger.info("Participant %s already registered (id=%s)", registration_number, participant.pk)
    return participant, created


def get_participant(participant_id) -> Participant:
    pk = _parse_participant_id(participant_id)
    try:
        participant = Participant.objects.filter(pk=pk).first()
    except DatabaseError as exc:
        logger.exception("Lookup error for participant %s", pk)
        raise PersistenceError("Failed to load participant") from exc
    if participant is None:
        raise NotFoundError(f"Unknown participant id {pk}")
    return participant


def participant_status(participant_id) -> ScanOutcome:
    """Progression et rang actuels, sans modification."""
    participant = get_participant(participant_id)
    try:
        rank = compute_rank(participant.progress, participant.last_scan_time, exclude=participant.pk)
    except DatabaseError as exc:
        logger.exception("Rank error for participant %s", participant.pk)
        raise PersistenceError("Failed to load participant") from exc
    return ScanOutcome(REGISTERED, participant, rank=rank)


def _append_scan(participant: Participant, code: str, now) -> bool:
    """Insère l'événement de scan s'il n'existe pas ; True si le code est nouveau."""
    try:
        with transaction.atomic():
            ScanEvent.objects.create(
                participant=participant,
                code=code,
                scanned_at=now,
                qr_code_number=qr_code_number_for(code),
            )
    except IntegrityError:
        return False
    return True


def record_scan(participant_id, code, now=None) -> ScanOutcome:
    """Traitement du scan d'un QR Code pour le participant de la session."""
    code = _required(code)
    if not code:
        raise ValidationError("QR code is required")
    pk = _parse_participant_id(participant_id)

    now = now or timezone.now()
    try:
        with transaction.atomic():
            participant = Participant.objects.select_for_update().filter(pk=pk).first()
            if participant is None:
                raise NotFoundError(f"Unknown participant id {pk}")

            if participant.has_scanned(code):
                return ScanOutcome(ALREADY_SCANNED, participant)

            # Popularité du code, avant ce scan
            scan_count = ScanEvent.objects.filter(code=code).count()

            if not _append_scan(participant, code, now):
                participant.refresh_from_db()
                return ScanOutcome(ALREADY_SCANNED, participant)

            participant.scanned_codes = list(participant.scanned_codes or []) + [code]
            participant.progress = len(participant.scanned_codes)
            participant.last_scan_time = now
            participant.save(update_fields=["scanned_codes", "progress", "last_scan_time"])

            rank = compute_rank(participant.progress, now, exclude=participant.pk)
    except DatabaseError as exc:
        logger.exception("Scan error for participant %s (code %s)", pk, code)
        raise PersistenceError("Failed to process QR code") from exc

    logger.info("Participant %s scanned %s (progress=%s, rank=%s)", pk, code, participant.progress, rank)
    return ScanOutcome(SUCCESS, participant, scan_count=scan_count, rank=rank)
