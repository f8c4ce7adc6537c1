import os

from django.core.management.base import BaseCommand, CommandError
from django.db import IntegrityError, transaction

from openpyxl import load_workbook

from hunt.models import Checkpoint


class Command(BaseCommand):
    help = (
        "Importe les QR Codes de la chasse depuis un fichier XLSX.\n"
        "Une ligne par QR Code : ordre | code | nom | indice\n"
        "Une première ligne d'en-tête est ignorée."
    )

    def add_arguments(self, parser):
        parser.add_argument("xlsx_path", type=str, help="Chemin vers le fichier XLSX à importer")

    def handle(self, *args, **options):
        path = options["xlsx_path"]
        if not os.path.isfile(path):
            raise CommandError(f"Fichier introuvable : {path}")

        wb = load_workbook(path, read_only=True, data_only=True)
        sheet = wb.active

        def normalized_row(cells):
            values = list(cells)
            values += [None] * (4 - len(values))
            return values[:4]

        def parse_order(value):
            if isinstance(value, (int, float)):
                return int(value)
            text = str(value).strip()
            return int(text) if text.isdigit() else None

        created, updated = 0, 0
        next_order = Checkpoint.objects.count() + 1
        try:
            with transaction.atomic():
                for index, row in enumerate(sheet.iter_rows(min_row=1, values_only=True), start=1):
                    if not row or not any(row):
                        continue
                    order, code, name, clue_text = normalized_row(row)

                    if order not in (None, ""):
                        parsed = parse_order(order)
                        if parsed is None:
                            if index == 1:
                                continue
                            raise CommandError(f"Ligne {index} : ordre invalide ({order}).")
                        order = parsed
                    else:
                        order = next_order
                    code = str(code or "").strip()
                    name = str(name or "").strip()
                    clue_text = str(clue_text or "").strip()

                    if not code or not name:
                        raise CommandError(f"Ligne {index} : code et nom sont requis.")

                    checkpoint = Checkpoint.objects.filter(code=code).first()
                    if checkpoint:
                        checkpoint.order = order
                        checkpoint.name = name
                        checkpoint.clue_text = clue_text
                        checkpoint.save()
                        updated += 1
                    else:
                        Checkpoint.objects.create(order=order, code=code, name=name, clue_text=clue_text)
                        created += 1
                    next_order = max(next_order, order + 1)
        except IntegrityError as exc:
            raise CommandError(f"Import impossible : {exc}")
        finally:
            wb.close()

        self.stdout.write(self.style.SUCCESS(f"QR Codes importés : {created} créés, {updated} mis à jour"))
