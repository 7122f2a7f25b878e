"""Single-section PDF report for query answers, drawn with the reportlab canvas."""

from datetime import datetime
from io import BytesIO
from typing import Optional, Sequence

from reportlab.lib import colors
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

PAGE_SIZE = (595, 842)  # A4 in points
MARGIN = 50
TOP_Y = 820 - MARGIN
BOTTOM_LIMIT = MARGIN + 60

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"

DEFAULT_TITLE = "Laporan Rekap Penjualan"
DEFAULT_FOOTER = "Generated by SiMbah - Sistem Informasi Penjualan"
EMPTY_SUMMARY = "(no summary)"

MONTHS_ID = (
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
)


def format_id_datetime(moment: datetime) -> str:
    """19 Oktober 2026 pukul 16.05"""
    return (
        f"{moment.day} {MONTHS_ID[moment.month - 1]} {moment.year} "
        f"pukul {moment:%H.%M}"
    )


def clean_summary(summary: Optional[str]) -> str:
    text = str(summary or "").replace("**", "").replace("\n", " ").strip()
    return text or EMPTY_SUMMARY


class _Layout:
    """Cursor over the pages of one document."""

    def __init__(self, footer: str):
        self.buffer = BytesIO()
        self.canvas = canvas.Canvas(self.buffer, pagesize=PAGE_SIZE)
        self.width, self.height = PAGE_SIZE
        self.footer = footer
        self.y = TOP_Y

    def _draw_footer(self):
        size = 9
        footer_width = stringWidth(self.footer, FONT, size)
        self.canvas.setFont(FONT, size)
        self.canvas.setFillColor(colors.black)
        self.canvas.drawString((self.width - footer_width) / 2, 30, self.footer)

    def new_page(self):
        self._draw_footer()
        self.canvas.showPage()
        self.y = TOP_Y

    def centered(self, text: str, size: float, bold: bool = False, gap: float = 8):
        font = FONT_BOLD if bold else FONT
        text_width = stringWidth(text, font, size)
        self.canvas.setFont(font, size)
        self.canvas.drawString((self.width - text_width) / 2, self.y - size, text)
        self.y -= size + gap

    def rule(self):
        self.canvas.setStrokeColorRGB(0.2, 0.2, 0.2)
        self.canvas.setLineWidth(1)
        self.canvas.line(MARGIN, self.y, self.width - MARGIN, self.y)

    def wrapped(
        self,
        text: str,
        size: float = 12,
        bold: bool = False,
        line_gap: float = 6,
        indent: float = 0,
    ):
        """Draw ``text`` word-wrapped to the printable width, breaking pages as needed."""
        font = FONT_BOLD if bold else FONT
        max_width = self.width - MARGIN * 2 - indent
        words = str(text).replace("\t", " ").split()

        line = ""
        for word in words:
            candidate = f"{line} {word}" if line else word
            if stringWidth(candidate, font, size) > max_width and line:
                self._flush(line, font, size, line_gap, indent)
                line = word
            else:
                line = candidate
        self._flush(line, font, size, line_gap, indent)

    def _flush(self, line: str, font: str, size: float, line_gap: float, indent: float):
        if not line:
            return
        self.canvas.setFont(font, size)
        self.canvas.setFillColor(colors.black)
        self.canvas.drawString(MARGIN + indent, self.y - (size + line_gap), line)
        self.y -= size + line_gap
        if self.y < BOTTOM_LIMIT:
            self.new_page()

    def finish(self) -> bytes:
        self._draw_footer()
        self.canvas.save()
        return self.buffer.getvalue()


class ReportRenderer:
    def __init__(self, title: str = DEFAULT_TITLE, footer: str = DEFAULT_FOOTER):
        self.title = title
        self.footer = footer

    def render(
        self,
        summary: Optional[str],
        row_count: int,
        tables: Sequence[str] = (),
        generated_at: Optional[datetime] = None,
        title: Optional[str] = None,
    ) -> bytes:
        """
        Lay out the report and return the PDF bytes.

        Sections: centered title, generation date, rule, "Ringkasan Eksekutif"
        with the summary, "Ringkasan Data" with row and table counts, footer.
        """
        layout = _Layout(self.footer)
        generated_at = generated_at or datetime.now()

        layout.centered(title or self.title, size=22, bold=True)
        layout.wrapped(f"Tanggal pembuatan: {format_id_datetime(generated_at)}", size=10)
        layout.y -= 6

        layout.rule()
        layout.y -= 18

        layout.wrapped("Ringkasan Eksekutif", size=14, bold=True)
        layout.wrapped(clean_summary(summary), size=11, line_gap=8)
        layout.y -= 8

        metrics = [f"Jumlah baris: {row_count}"]
        if tables:
            metrics.append(f"Tabel: {', '.join(tables)}")
        layout.y -= 6
        layout.wrapped("Ringkasan Data", size=12, bold=True)
        layout.wrapped(" | ".join(metrics), size=11)

        return layout.finish()
