import qrcode
from io import BytesIO
from urllib.parse import urlencode, urljoin

from django.conf import settings
from django.core.files.base import ContentFile
from django.db import models
from django.urls import reverse
from django.utils import timezone


class Participant(models.Model):
    """Un participant inscrit à la chasse."""
    registration_number = models.CharField("Numéro d'inscription", max_length=100, unique=True)
    scanned_codes = models.JSONField("Codes scannés", default=list, blank=True)
    progress = models.PositiveIntegerField("Progression", default=0)
    last_scan_time = models.DateTimeField("Dernier scan", default=timezone.now, db_index=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'users'
        ordering = ['-progress', 'last_scan_time']

    def __str__(self):
        return f"{self.registration_number} ({self.progress} composants)"

    def has_scanned(self, code):
        return code in (self.scanned_codes or [])

    @property
    def is_complete(self):
        return self.progress >= getattr(settings, 'HUNT_TOTAL_COMPONENTS', 5)


class ScanEvent(models.Model):
    """Historique immuable des scans acceptés."""
    participant = models.ForeignKey(Participant, on_delete=models.CASCADE, related_name='scans')
    code = models.CharField("Code", max_length=200, db_index=True)
    scanned_at = models.DateTimeField(default=timezone.now)
    qr_code_number = models.PositiveIntegerField("Numéro du QR Code", default=1)

    class Meta:
        db_table = 'scans'
        ordering = ['scanned_at']
        constraints = [
            models.UniqueConstraint(fields=['participant', 'code'], name='uq_scan_participant_code'),
        ]

    def __str__(self):
        return f"{self.participant.registration_number} - {self.code} ({self.scanned_at:%H:%M:%S})"


class Checkpoint(models.Model):
    """Un QR Code imprimable de la chasse."""
    order = models.PositiveIntegerField("Ordre", unique=True)
    code = models.CharField("Code", max_length=200, unique=True, help_text="Valeur encodée, ex: qr-code-1")
    name = models.CharField("Nom", max_length=100, help_text="Ex: La fontaine")
    clue_text = models.TextField("Indice", blank=True, help_text="Indice révélé quand on scanne ce QR Code")
    qr_code = models.ImageField(upload_to='qr_codes/', blank=True, null=True)

    class Meta:
        db_table = 'checkpoints'
        ordering = ['order']

    def __str__(self):
        return f"{self.order}. {self.name} ({self.code})"

    def scan_url(self):
        relative_path = f"{reverse('hunt:hunt')}?{urlencode({'code': self.code})}"
        base_url = getattr(settings, 'SITE_BASE_URL', '').rstrip('/')
        return urljoin(f"{base_url}/", relative_path.lstrip('/')) if base_url else relative_path

    def save(self, *args, **kwargs):
        if not self.qr_code:
            qr = qrcode.make(self.scan_url())
            buffer = BytesIO()
            qr.save(buffer, format='PNG')
            filename = f"qr_{self.order}.png"
            self.qr_code.save(filename, ContentFile(buffer.getvalue()), save=False)
        super().save(*args, **kwargs)
