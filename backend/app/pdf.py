from __future__ import annotations

import io
from textwrap import wrap

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from care_routing import CareRequest, Prescription


def build_prescription_pdf(prescription: Prescription, request: CareRequest | None) -> bytes:
    """Render a one-page printable prescription for the patient."""
    buff = io.BytesIO()
    pdf = canvas.Canvas(buff, pagesize=letter)
    width, height = letter

    y = height - 40
    pdf.setFont("Helvetica-Bold", 14)
    pdf.drawString(40, y, f"Prescription #{prescription.prescription_id}")
    y -= 18
    pdf.setFont("Helvetica", 10)
    pdf.drawString(40, y, f"Issued: {prescription.created_at.isoformat(timespec='seconds')}")
    y -= 14
    pdf.drawString(40, y, f"Patient: {prescription.requester_name}")
    y -= 14
    pdf.drawString(40, y, f"Prescribed by: {prescription.author_name}")
    y -= 14

    if request is not None:
        pdf.drawString(40, y, f"Hospital: {request.facility_name}  |  Request #{request.request_id} ({request.kind.value})")
        y -= 14
        pdf.drawString(40, y, f"Criticality: {request.criticality}  |  Reason: {request.reason[:70]}")
        y -= 14

    y -= 10
    pdf.setStrokeColor(colors.darkblue)
    pdf.line(40, y, width - 40, y)
    y -= 20

    pdf.setFont("Helvetica", 11)
    for paragraph in prescription.content.splitlines() or [""]:
        for line in wrap(paragraph, 90) or [""]:
            if y < 60:
                pdf.showPage()
                pdf.setFont("Helvetica", 11)
                y = height - 40
            pdf.drawString(45, y, line)
            y -= 15

    pdf.save()
    buff.seek(0)
    return buff.read()
