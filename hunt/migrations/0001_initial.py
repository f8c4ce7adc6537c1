import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Checkpoint',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order', models.PositiveIntegerField(unique=True, verbose_name='Ordre')),
                ('code', models.CharField(help_text='Valeur encodée, ex: qr-code-1', max_length=200, unique=True, verbose_name='Code')),
                ('name', models.CharField(help_text='Ex: La fontaine', max_length=100, verbose_name='Nom')),
                ('clue_text', models.TextField(blank=True, help_text='Indice révélé quand on scanne ce QR Code', verbose_name='Indice')),
                ('qr_code', models.ImageField(blank=True, null=True, upload_to='qr_codes/')),
            ],
            options={
                'db_table': 'checkpoints',
                'ordering': ['order'],
            },
        ),
        migrations.CreateModel(
            name='Participant',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('registration_number', models.CharField(max_length=100, unique=True, verbose_name="Numéro d'inscription")),
                ('scanned_codes', models.JSONField(blank=True, default=list, verbose_name='Codes scannés')),
                ('progress', models.PositiveIntegerField(default=0, verbose_name='Progression')),
                ('last_scan_time', models.DateTimeField(db_index=True, default=django.utils.timezone.now, verbose_name='Dernier scan')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'users',
                'ordering': ['-progress', 'last_scan_time'],
            },
        ),
        migrations.CreateModel(
            name='ScanEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(db_index=True, max_length=200, verbose_name='Code')),
                ('scanned_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('qr_code_number', models.PositiveIntegerField(default=1, verbose_name='Numéro du QR Code')),
                ('participant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='scans', to='hunt.participant')),
            ],
            options={
                'db_table': 'scans',
                'ordering': ['scanned_at'],
            },
        ),
        migrations.AddConstraint(
            model_name='scanevent',
            constraint=models.UniqueConstraint(fields=('participant', 'code'), name='uq_scan_participant_code'),
        ),
    ]
