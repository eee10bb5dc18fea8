"""Utilidades para generar tokens, deep links e imágenes QR de tickets"""
import io
import logging
import uuid
from typing import Optional

import qrcode
from PIL import Image, ImageDraw, ImageFont

from app.core.config import settings

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 24
LABEL_FONT_SIZE = 18


def payload_prefix(scheme: Optional[str] = None, namespace: Optional[str] = None) -> str:
    """Prefijo fijo de los deep links: '<scheme>://<namespace>/'"""
    scheme = scheme or settings.PAYLOAD_SCHEME
    namespace = namespace or settings.PAYLOAD_NAMESPACE
    return f"{scheme}://{namespace}/"


def new_token() -> str:
    """
    Generar token opaco de 24 caracteres hexadecimales

    uuid4 usa os.urandom (fuente criptográfica de 128 bits). No se consulta
    el store para detectar duplicados: la unicidad descansa en la entropía.
    """
    return uuid.uuid4().hex[:TOKEN_LENGTH]


def new_reference() -> str:
    """Referencia corta para humanos, independiente del token"""
    return str(uuid.uuid4())[-8:]


def build_payload(token: str) -> str:
    """Construir el deep link que se codifica en el QR"""
    return f"{payload_prefix()}{token}"


def is_ticket_payload(text: str) -> bool:
    """True si el texto tiene el formato de payload emitido por este sistema"""
    return bool(text) and text.startswith(payload_prefix())


def ticket_caption(reference: str, sequence_number: int) -> str:
    return f"Ref.:{reference}, No: {sequence_number}"


def _load_font(size: int):
    try:
        return ImageFont.truetype("DejaVuSans.ttf", size)
    except OSError:
        return ImageFont.load_default()


def encode_qr_matrix(text: str, margin: int):
    """Matriz de módulos del QR (incluye el quiet zone de `margin` módulos)"""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        border=margin,
    )
    qr.add_data(text)
    qr.make(fit=True)
    return qr.get_matrix()


def render_ticket_image(
    payload: str,
    reference: str,
    sequence_number: int,
    size_px: Optional[int] = None,
    label_height_px: Optional[int] = None,
    margin: Optional[int] = None,
) -> Image.Image:
    """
    Renderizar el QR cuadrado del payload con una franja de texto debajo

    El lienzo mide size_px x (size_px + label_height_px): el QR ocupa el
    cuadrado superior y la franja muestra "Ref.:<ref>, No: <n>".
    """
    size_px = size_px or settings.QR_SIZE_PX
    label_height_px = settings.QR_LABEL_HEIGHT_PX if label_height_px is None else label_height_px
    margin = settings.QR_MARGIN if margin is None else margin

    matrix = encode_qr_matrix(payload, margin)
    modules = len(matrix)

    qr_small = Image.new("L", (modules, modules), 255)
    qr_small.putdata([0 if cell else 255 for row in matrix for cell in row])

    # Escala entera para módulos uniformes, centrado dentro del cuadrado
    module_px = max(size_px // modules, 1)
    inner = module_px * modules
    qr_img = qr_small.resize((inner, inner), Image.Resampling.NEAREST)
    qr_small.close()

    canvas = Image.new("RGB", (size_px, size_px + label_height_px), "white")
    offset = max((size_px - inner) // 2, 0)
    canvas.paste(qr_img, (offset, offset))
    qr_img.close()

    if label_height_px > 0:
        draw = ImageDraw.Draw(canvas)
        font = _load_font(LABEL_FONT_SIZE)
        caption = ticket_caption(reference, sequence_number)
        text_width = draw.textlength(caption, font=font)
        x = max((size_px - text_width) / 2, 0)
        y = size_px + max((label_height_px - LABEL_FONT_SIZE) // 2, 0)
        draw.text((x, y), caption, fill="black", font=font)

    return canvas


def image_to_png_bytes(img: Image.Image) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()
