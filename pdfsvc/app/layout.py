"""
Hojas PDF de QR para imprimir

La geometría se calcula en píxeles de una página A4 a 150 dpi (1240x1754)
y recién al dibujar se escala a puntos PDF. Cada imagen trae el QR cuadrado
arriba y una banda de texto abajo; esa banda se repinta en blanco y se
vuelve a escribir la etiqueta para que todas las hojas queden uniformes.
"""
from dataclasses import dataclass, field
from io import BytesIO
from math import ceil, floor
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple
import logging
import time

from PIL import Image, UnidentifiedImageError
from reportlab.lib import colors
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas

from app.core.config import settings
from shared.utils.exceptions import DecodeFailureError, NothingExportedError

logger = logging.getLogger(__name__)

PAGE_WIDTH_PX = 1240
PAGE_HEIGHT_PX = 1754
PAGE_DPI = 150
A4_WIDTH_MM = 210.0

DEFAULT_RATIO = 1.12
LABEL_FONT = "Helvetica"
LABEL_MAX_WIDTH = 0.95
LABEL_MIN_SCALE = 0.07
LABEL_SHRINK_STEP = 0.95

ProgressCallback = Callable[[int, int], None]
ImageFetcher = Callable[["ExportItem"], Awaitable[Optional[bytes]]]


@dataclass(frozen=True)
class SheetConfig:
    """Parámetros de la hoja, todos en píxeles de página"""
    cell_width_px: int
    margin_px: int
    gutter_px: int
    page_width_px: int = PAGE_WIDTH_PX
    page_height_px: int = PAGE_HEIGHT_PX
    dpi: int = PAGE_DPI
    single_per_page: bool = False
    label_scale: float = 0.095
    label_top_pad_px: int = 0
    label_nudge_px: int = 0
    # En modo 1 por página el QR ocupa esta fracción del ancho útil; None = tamaño de celda
    single_page_fraction: Optional[float] = None

    @classmethod
    def from_mm(
        cls,
        cell_width_mm: float = 16.0,
        margin_mm: float = 5.0,
        gutter_mm: float = 2.0,
        label_top_pad_mm: float = 0.0,
        label_nudge_mm: float = 0.1,
        single_per_page: bool = False,
        label_scale: float = 0.095,
        min_cell_width_px: int = 48,
        single_page_fraction: Optional[float] = None,
    ) -> "SheetConfig":
        """Config a partir de milímetros (valores por defecto de la pantalla de export)"""
        def mm_to_px(mm: float) -> int:
            return max(int(mm / A4_WIDTH_MM * PAGE_WIDTH_PX), 0)

        if single_page_fraction is None:
            single_page_fraction = settings.PDF_SINGLE_PAGE_FRACTION

        return cls(
            cell_width_px=max(mm_to_px(cell_width_mm), min_cell_width_px),
            margin_px=mm_to_px(margin_mm),
            gutter_px=mm_to_px(gutter_mm),
            single_per_page=single_per_page,
            label_scale=label_scale,
            label_top_pad_px=mm_to_px(label_top_pad_mm),
            label_nudge_px=mm_to_px(label_nudge_mm),
            single_page_fraction=single_page_fraction,
        )


@dataclass
class ExportItem:
    image_bytes: Optional[bytes]
    reference: Optional[str]
    sequence_number: Optional[int]
    name: str = ""

    @property
    def caption(self) -> str:
        number = self.sequence_number if self.sequence_number is not None else "?"
        return f"Ref.: {self.reference or '-'}, No: {number}"


def sort_key(item: ExportItem):
    """Sin número al final, luego número, referencia y nombre"""
    return (
        item.sequence_number is None,
        item.sequence_number if item.sequence_number is not None else 0,
        item.reference or "",
        item.name,
    )


def sort_items(items: Sequence[ExportItem]) -> List[ExportItem]:
    return sorted(items, key=sort_key)


@dataclass(frozen=True)
class LabelBand:
    mask_top: int
    text: str
    font_size: float
    baseline: float


@dataclass(frozen=True)
class Placement:
    item_index: int
    left: int
    top: int
    width: int
    height: int
    label: Optional[LabelBand] = None

    @property
    def bottom(self) -> int:
        return self.top + self.height


@dataclass
class PageSet:
    config: SheetConfig
    items: List[ExportItem]
    columns: int
    rows: int
    cell_width: int
    cell_height: int
    pages: List[List[Placement]] = field(default_factory=list)
    skipped: int = 0

    @property
    def per_page(self) -> int:
        return self.columns * self.rows

    @property
    def drawn(self) -> int:
        return sum(len(page) for page in self.pages)


def decode_image(data: Optional[bytes]) -> Image.Image:
    """Decodificar completamente la imagen o lanzar DecodeFailureError"""
    if not data:
        raise DecodeFailureError("Imagen vacía o no descargada")
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeFailureError(f"Imagen no decodificable: {e}")
    return img


def sample_ratio(items: Sequence[ExportItem]) -> float:
    """Relación alto/ancho del primer item (1.12 si no se puede leer, nunca < 1)"""
    ratio = DEFAULT_RATIO
    if items:
        try:
            img = decode_image(items[0].image_bytes)
        except DecodeFailureError:
            pass
        else:
            with img:
                if img.width > 0:
                    ratio = img.height / img.width
    return max(ratio, 1.0)


def fit_label(text: str, cell_width: int, label_scale: float) -> float:
    """Tamaño de fuente que entra en el 95% del ancho (con piso en 7% del ancho)"""
    size = cell_width * label_scale
    min_size = cell_width * LABEL_MIN_SCALE
    max_width = cell_width * LABEL_MAX_WIDTH
    while pdfmetrics.stringWidth(text, LABEL_FONT, size) > max_width and size > min_size:
        size *= LABEL_SHRINK_STEP
    return size


class PdfSheetLayoutEngine:
    """Grilla de celdas de tamaño fijo, o un QR agrandado y centrado por página"""

    def layout(
        self,
        items: Sequence[ExportItem],
        config: SheetConfig,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PageSet:
        """
        Ubicar los items (ya ordenados) en páginas

        Las imágenes que no decodifican se saltan: no ocupan celda pero sí
        avanzan el progreso. Si no queda ninguna, NothingExportedError.
        """
        items = list(items)
        page_set = self._page_set(items, config)

        total = len(items)
        for index, item in enumerate(items):
            if self._decodes(item):
                self._add(page_set, index, item)
            else:
                page_set.skipped += 1

            if on_progress is not None:
                on_progress(index + 1, total)

        return self._finish(page_set)

    async def export(
        self,
        items: Sequence[ExportItem],
        config: SheetConfig,
        fetch: ImageFetcher,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Tuple[bytes, PageSet]:
        """
        Bajar, ubicar y dibujar las imágenes de a una

        Cada imagen se descarga con `fetch` recién cuando le toca, se dibuja
        y se suelta antes de pasar a la siguiente. El progreso avanza por
        imagen descargada, incluidas las que no decodifican.

        Returns:
            (bytes del PDF, PageSet con la ubicación de cada item)
        """
        items = list(items)
        # La proporción de la celda sale del primer item
        if items and items[0].image_bytes is None:
            items[0].image_bytes = await fetch(items[0])
        page_set = self._page_set(items, config)

        buffer = BytesIO()
        c = self._canvas(buffer, config)

        total = len(items)
        for index, item in enumerate(items):
            if item.image_bytes is None:
                item.image_bytes = await fetch(item)

            if self._decodes(item):
                placement, new_page = self._add(page_set, index, item)
                if new_page and len(page_set.pages) > 1:
                    c.showPage()
                self._draw(c, placement, item.image_bytes, config)
            else:
                page_set.skipped += 1
            item.image_bytes = None

            if on_progress is not None:
                on_progress(index + 1, total)

        self._finish(page_set)
        c.showPage()
        c.save()
        return buffer.getvalue(), page_set

    def _page_set(self, items: List[ExportItem], config: SheetConfig) -> PageSet:
        cell_w, cell_h = self._cell_size(config, sample_ratio(items))

        avail_w = config.page_width_px - config.margin_px * 2
        avail_h = config.page_height_px - config.margin_px * 2
        if config.single_per_page:
            columns = rows = 1
        else:
            columns = max(1, floor((avail_w + config.gutter_px) / (cell_w + config.gutter_px)))
            rows = max(1, floor((avail_h + config.gutter_px) / (cell_h + config.gutter_px)))

        return PageSet(
            config=config,
            items=items,
            columns=columns,
            rows=rows,
            cell_width=cell_w,
            cell_height=cell_h,
        )

    def _decodes(self, item: ExportItem) -> bool:
        try:
            decode_image(item.image_bytes).close()
        except DecodeFailureError as e:
            logger.warning(f"Saltando {item.name or item.reference}: {e.message}")
            return False
        return True

    def _add(self, page_set: PageSet, index: int, item: ExportItem) -> Tuple[Placement, bool]:
        # Páginas perezosas: nunca queda una página vacía al final
        new_page = not page_set.pages or len(page_set.pages[-1]) == page_set.per_page
        if new_page:
            page_set.pages.append([])
        placement = self._place(index, item, len(page_set.pages[-1]), page_set)
        page_set.pages[-1].append(placement)
        return placement, new_page

    def _finish(self, page_set: PageSet) -> PageSet:
        if page_set.drawn == 0:
            raise NothingExportedError("Ninguna imagen válida para exportar")

        logger.info(
            f"Layout: {page_set.drawn} QR en {len(page_set.pages)} páginas "
            f"({page_set.columns}x{page_set.rows}, {page_set.skipped} omitidos)"
        )
        return page_set

    def _cell_size(self, config: SheetConfig, ratio: float):
        cell_w = config.cell_width_px
        if config.single_per_page and config.single_page_fraction:
            avail_w = config.page_width_px - config.margin_px * 2
            avail_h = config.page_height_px - config.margin_px * 2
            cell_w = max(int(avail_w * config.single_page_fraction), config.cell_width_px)
            if ceil(cell_w * ratio) > avail_h:
                cell_w = int(avail_h / ratio)
        return cell_w, ceil(cell_w * ratio)

    def _place(self, index: int, item: ExportItem, slot: int, page_set: PageSet) -> Placement:
        config = page_set.config
        cell_w, cell_h = page_set.cell_width, page_set.cell_height

        if config.single_per_page:
            left = (config.page_width_px - cell_w) // 2
            top = max(config.margin_px, (config.page_height_px - cell_h) // 2)
        else:
            row, col = divmod(slot, page_set.columns)
            left = config.margin_px + col * (cell_w + config.gutter_px)
            top = config.margin_px + row * (cell_h + config.gutter_px)

        return Placement(
            item_index=index,
            left=left,
            top=top,
            width=cell_w,
            height=cell_h,
            label=self._label(item, top, cell_w, cell_h, config),
        )

    def _label(self, item: ExportItem, top: int, cell_w: int, cell_h: int,
               config: SheetConfig) -> Optional[LabelBand]:
        # Banda de texto = alto - ancho (QR cuadrado arriba)
        footer_h = max(cell_h - cell_w, 0)
        if footer_h == 0:
            return None

        mask_top = max(top + cell_h - footer_h - config.label_top_pad_px, top)
        text = item.caption
        size = fit_label(text, cell_w, config.label_scale)
        baseline = mask_top + pdfmetrics.getAscent(LABEL_FONT, size) - config.label_nudge_px
        return LabelBand(mask_top=mask_top, text=text, font_size=size, baseline=baseline)

    def _canvas(self, buffer: BytesIO, config: SheetConfig) -> canvas.Canvas:
        scale = 72.0 / config.dpi
        return canvas.Canvas(buffer, pagesize=(config.page_width_px * scale, config.page_height_px * scale))

    def _draw(self, c: canvas.Canvas, placement: Placement, image_bytes: bytes, config: SheetConfig):
        scale = 72.0 / config.dpi
        page_h = config.page_height_px

        c.drawImage(
            ImageReader(BytesIO(image_bytes)),
            placement.left * scale,
            (page_h - placement.bottom) * scale,
            width=placement.width * scale,
            height=placement.height * scale,
        )

        label = placement.label
        if label is None:
            return
        c.setFillColor(colors.white)
        c.rect(
            placement.left * scale,
            (page_h - placement.bottom) * scale,
            placement.width * scale,
            (placement.bottom - label.mask_top) * scale,
            fill=1,
            stroke=0,
        )
        c.setFillColor(colors.black)
        c.setFont(LABEL_FONT, label.font_size * scale)
        c.drawCentredString(
            (placement.left + placement.width / 2) * scale,
            (page_h - label.baseline) * scale,
            label.text,
        )

    def render(self, page_set: PageSet) -> bytes:
        """Dibujar un PageSet ya ubicado (con las imágenes en memoria) y devolver el PDF"""
        buffer = BytesIO()
        c = self._canvas(buffer, page_set.config)

        for page in page_set.pages:
            for placement in page:
                item = page_set.items[placement.item_index]
                self._draw(c, placement, item.image_bytes, page_set.config)
            c.showPage()

        c.save()
        return buffer.getvalue()


def export_filename(folder: str, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"qrcodes_{folder}_{now_ms}.pdf"
