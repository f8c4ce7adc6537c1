from django.http import HttpResponse
from django.utils import timezone
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 2 * cm
HEADER_HEIGHT = 5 * cm
GAP = 1 * cm
CARD_WIDTH = 8 * cm
CARD_HEIGHT = 10 * cm
QR_SIZE = 6 * cm
COLUMNS = 2
ROWS = 2
CARDS_PER_PAGE = COLUMNS * ROWS


def card_origin(slot):
    """Coin inférieur gauche de la carte n° `slot` de la page."""
    column, row = slot % COLUMNS, slot // COLUMNS
    x = MARGIN + column * (CARD_WIDTH + GAP)
    y = PAGE_HEIGHT - HEADER_HEIGHT - (row + 1) * CARD_HEIGHT - row * GAP
    return x, y


def draw_header(pdf, title):
    pdf.setFont("Helvetica-Bold", 24)
    pdf.drawString(MARGIN, PAGE_HEIGHT - 3 * cm, title)
    pdf.setFont("Helvetica", 12)
    pdf.drawString(MARGIN, PAGE_HEIGHT - 4 * cm, f"Generated {timezone.now():%d/%m/%Y}")


def draw_card(pdf, checkpoint, x, y):
    pdf.rect(x, y, CARD_WIDTH, CARD_HEIGHT)
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(x + 0.5 * cm, y + CARD_HEIGHT - 1 * cm, f"QR code {checkpoint.order}")
    pdf.setFont("Helvetica", 12)
    pdf.drawString(x + 0.5 * cm, y + CARD_HEIGHT - 1.5 * cm, checkpoint.name)

    qr_x = x + (CARD_WIDTH - QR_SIZE) / 2
    try:
        pdf.drawImage(checkpoint.qr_code.path, qr_x, y + 2 * cm, width=QR_SIZE, height=QR_SIZE)
    except OSError:
        pdf.drawString(qr_x, y + 5 * cm, "Image error")

    pdf.setFont("Helvetica", 8)
    pdf.drawString(x + 0.5 * cm, y + 1 * cm, checkpoint.code)


def render_checkpoint_sheet(pdf, checkpoints, title="Scavenger hunt QR codes"):
    """
    Dessine une carte par checkpoint, quatre par page A4.

    Les checkpoints sans image sont ignorés. Renvoie le nombre de cartes.
    """
    printable = [c for c in checkpoints if c.qr_code]
    draw_header(pdf, title)
    for index, checkpoint in enumerate(printable):
        slot = index % CARDS_PER_PAGE
        if index and slot == 0:
            pdf.showPage()
            draw_header(pdf, title)
        draw_card(pdf, checkpoint, *card_origin(slot))
    pdf.showPage()
    pdf.save()
    return len(printable)


def checkpoint_sheet_response(checkpoints, filename="qr_codes.pdf"):
    response = HttpResponse(content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    render_checkpoint_sheet(canvas.Canvas(response, pagesize=A4), checkpoints)
    return response
