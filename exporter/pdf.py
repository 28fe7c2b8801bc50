"""PDF export for a finished itinerary.

The document is laid out first as a flat list of blocks, then drawn with fpdf2.
Every page carries the brand header and a "Page N of M" footer; the packing
list always starts on a fresh page.
"""
import re
from datetime import date
from pathlib import Path
from typing import List, NamedTuple, Optional, Union

from fpdf import FPDF

from orchestrator.config import CONFIG
from orchestrator.errors import ExportError
from orchestrator.models import Activity, Itinerary


MARGIN = 72  # 1 inch, in points

TITLE = "title"
SUBTITLE = "subtitle"
HEADING = "heading"
PARAGRAPH = "paragraph"
BULLET = "bullet"
PACKING_ITEM = "packing_item"
PAGE_BREAK = "page_break"

PACKING_HEADING = "What to Pack"

_UNSAFE_FILENAME = re.compile(r"[\\/:*?\"<>|\x00-\x1f]+")

COLORS = {
    "text": (0x33, 0x33, 0x33),
    "heading": (0x00, 0x1F, 0x3F),
    "subtitle": (0x55, 0x55, 0x55),
    "light_gray": (0xAA, 0xAA, 0xAA),
    "line": (0xDD, 0xDD, 0xDD),
}

# Core PDF fonts are latin-1 only.
_TYPOGRAPHY = str.maketrans({
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "–": "-",
    "—": "-",
    "…": "...",
})


class Block(NamedTuple):
    kind: str
    text: str = ""


def _latin1(text: str) -> str:
    return text.translate(_TYPOGRAPHY).encode("latin-1", "replace").decode("latin-1")


def activity_line(activity: Activity) -> str:
    return f"({activity.time}) {activity.name}: {activity.description}"


def export_filename(itinerary: Itinerary, brand: str = CONFIG.brand_name) -> str:
    destination = re.sub(r",\s*", "-", itinerary.destination)
    # Path separators and characters filesystems reject never reach the name.
    destination = _UNSAFE_FILENAME.sub("-", destination).strip(" .-")
    return f"{brand}-Itinerary-{destination}.pdf"


def layout(itinerary: Itinerary) -> List[Block]:
    if not itinerary.is_complete:
        raise ExportError("Only a complete itinerary can be exported.")

    blocks = [
        Block(TITLE, itinerary.trip_title or ""),
        Block(SUBTITLE, itinerary.subtitle),
    ]
    for day in itinerary.daily_plans:
        blocks.append(Block(HEADING, f"Day {day.day}: {day.title}"))
        if day.summary:
            blocks.append(Block(PARAGRAPH, day.summary))
        for activity in day.activities:
            blocks.append(Block(BULLET, activity_line(activity)))

    if itinerary.packing_list:
        blocks.append(Block(PAGE_BREAK))
        blocks.append(Block(HEADING, PACKING_HEADING))
        for item in itinerary.packing_list:
            blocks.append(Block(PACKING_ITEM, item))
    return blocks


class ItineraryPDF(FPDF):
    def __init__(self, brand: str, date_text: str) -> None:
        super().__init__(orientation="P", unit="pt", format="A4")
        self.brand = brand
        self.date_text = date_text
        self.set_margins(MARGIN, MARGIN, MARGIN)
        self.set_auto_page_break(True, margin=MARGIN)
        self.alias_nb_pages()

    def header(self) -> None:
        self.set_font("Helvetica", "", 9)
        self.set_text_color(*COLORS["light_gray"])
        self.set_xy(MARGIN, 30)
        self.cell(0, 12, _latin1(f"{self.brand} Itinerary"))
        self.set_xy(MARGIN, 30)
        self.cell(0, 12, self.date_text, align="R")
        self.set_draw_color(*COLORS["line"])
        self.set_line_width(0.5)
        self.line(MARGIN, 50, self.w - MARGIN, 50)
        self.set_y(MARGIN)

    def footer(self) -> None:
        self.set_y(-50)
        self.set_font("Helvetica", "", 9)
        self.set_text_color(*COLORS["light_gray"])
        self.cell(0, 12, f"Page {self.page_no()} of {{nb}}", align="R")

    def paragraph(self, text: str, size: float, style: str = "", color: str = "text", line_height: float = 1.5) -> None:
        self.set_font("Helvetica", style, size)
        self.set_text_color(*COLORS[color])
        self.multi_cell(0, size * line_height, _latin1(text), new_x="LMARGIN", new_y="NEXT")

    def bullet(self, text: str, size: float) -> None:
        indent = 17
        self.set_font("Helvetica", "", size)
        self.set_text_color(*COLORS["text"])
        line_height = size * 1.5
        if self.will_page_break(line_height):
            self.add_page()
        self.set_fill_color(*COLORS["text"])
        self.ellipse(self.l_margin + 2, self.get_y() + line_height / 2 - 2, 4, 4, style="F")
        self.set_x(self.l_margin + indent)
        self.multi_cell(self.epw - indent, line_height, _latin1(text), new_x="LMARGIN", new_y="NEXT")


def render(itinerary: Itinerary, brand: str = CONFIG.brand_name, today: Optional[date] = None) -> ItineraryPDF:
    blocks = layout(itinerary)
    pdf = ItineraryPDF(brand, (today or date.today()).strftime("%d %b %Y"))
    pdf.add_page()

    for block in blocks:
        if block.kind == PAGE_BREAK:
            pdf.add_page()
        elif block.kind == TITLE:
            pdf.paragraph(block.text, 26, style="B", color="heading", line_height=1.15)
            pdf.ln(8)
        elif block.kind == SUBTITLE:
            pdf.paragraph(block.text, 16, color="subtitle", line_height=1.15)
            pdf.ln(15)
        elif block.kind == HEADING:
            pdf.ln(18)
            pdf.paragraph(block.text, 14, style="B", color="heading", line_height=1.2)
            pdf.ln(6)
        elif block.kind == PARAGRAPH:
            pdf.paragraph(block.text, 11)
            pdf.ln(8)
        elif block.kind == BULLET:
            pdf.bullet(block.text, 11)
            pdf.ln(8)
        elif block.kind == PACKING_ITEM:
            pdf.bullet(block.text, 10)
            pdf.ln(4)
    return pdf


def export_itinerary(
    itinerary: Itinerary,
    directory: Union[str, Path] = CONFIG.export_dir,
    brand: str = CONFIG.brand_name,
) -> Path:
    pdf = render(itinerary, brand)
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / export_filename(itinerary, brand)
    pdf.output(str(path))
    return path
